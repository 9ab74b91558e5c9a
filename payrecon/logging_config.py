# payrecon/logging_config.py
import logging
import logging.config
import os
import uuid
from datetime import datetime

from flask import g, has_request_context, request
from pythonjsonlogger import jsonlogger


class RequestIdFilter(logging.Filter):
    """
    Inject request_id into every log record if present.
    """

    def filter(self, record):
        record.request_id = getattr(g, "request_id", None) if has_request_context() else None
        return True


def build_logging_config(level):
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {
                "()": RequestIdFilter,
            },
        },
        "formatters": {
            "json": {
                "()": jsonlogger.JsonFormatter,
                "fmt": (
                    "%(asctime)s "
                    "%(levelname)s "
                    "%(name)s "
                    "%(message)s "
                    "%(request_id)s "
                    "%(module)s "
                    "%(funcName)s "
                    "%(lineno)d"
                ),
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "filters": ["request_id"],
            },
        },
        "loggers": {
            "werkzeug": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
            "urllib3": {"level": "WARNING"},
        },
        "root": {
            "level": level,
            "handlers": ["default"],
        },
    }


def setup_logging(app):
    """Configure structured JSON logging for the application"""
    log_level = str(app.config.get("LOG_LEVEL", os.getenv("LOG_LEVEL", "INFO"))).upper()

    logging.config.dictConfig(build_logging_config(log_level))

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        if app.config.get("LOG_REQUESTS", False):
            g.start_time = datetime.now()
            app.logger.info(
                f"Request: {request.method} {request.path}",
                extra={"ip": request.remote_addr},
            )

    @app.after_request
    def log_response(response):
        response.headers["X-Request-ID"] = getattr(g, "request_id", "")
        if app.config.get("LOG_REQUESTS", False) and hasattr(g, "start_time"):
            duration = (datetime.now() - g.start_time).total_seconds() * 1000
            app.logger.info(
                f"Response: {request.method} {request.path} - {response.status_code}",
                extra={
                    "status_code": response.status_code,
                    "duration_ms": round(duration, 2),
                },
            )
        return response

    return app


def configure_logging_for_worker():
    """Configure logging for Celery workers and CLI commands."""
    logging.config.dictConfig(build_logging_config(os.getenv("LOG_LEVEL", "INFO").upper()))
