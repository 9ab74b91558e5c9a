"""
Flask application factory for the payment reconciliation service.
Fails fast on configuration errors in production.
"""

import logging
from typing import Optional

import sentry_sdk
from flask import Flask, jsonify
from sentry_sdk.integrations.flask import FlaskIntegration
from werkzeug.middleware.proxy_fix import ProxyFix

from payrecon.config import ConfigurationError, get_config
from payrecon.error_handlers import register_error_handlers
from payrecon.extensions import init_extensions
from payrecon.logging_config import setup_logging
from payrecon.routes import register_routes
from payrecon.utils import utcnow
from payrecon.workers.celery_app import init_celery

logger = logging.getLogger(__name__)


def setup_sentry(app: Flask) -> None:
    """Initialize Sentry error tracking"""
    sentry_dsn = app.config.get("SENTRY_DSN")

    if sentry_dsn and app.config.get("ENVIRONMENT") == "production":
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment="production",
            send_default_pii=False,
        )
        app.logger.info("Sentry error tracking initialized")


def setup_proxy_fix(app: Flask) -> None:
    """Trust X-Forwarded-For only for the configured number of proxy hops"""
    hops = app.config.get("PROXY_FIX_X_FOR", 0)
    if hops:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops)
        app.logger.info(f"ProxyFix enabled for {hops} proxy hop(s)")


def validate_configuration(app: Flask, config) -> None:
    issues = config.validate()
    if not issues:
        return
    for issue in issues:
        app.logger.error(f"Configuration problem: {issue}")
    if app.config.get("ENVIRONMENT") == "production":
        raise ConfigurationError("Invalid configuration: " + "; ".join(issues))
    app.logger.warning("Configuration validation failed, but continuing outside production")


def create_app(config_name: Optional[str] = None) -> Flask:
    """
    Application factory.

    Args:
        config_name: development, production or testing; defaults to APP_ENV

    Raises:
        ConfigurationError: If configuration validation fails in production
    """
    app = Flask(__name__)

    config = get_config(config_name)
    app.config.from_object(config)

    setup_logging(app)
    app.logger.info(f"Starting application initialization in {app.config.get('ENVIRONMENT')} mode...")

    validate_configuration(app, config)
    setup_sentry(app)
    setup_proxy_fix(app)

    init_extensions(app)

    init_celery(app)

    register_error_handlers(app)
    register_routes(app)

    @app.route("/health")
    def health():
        return jsonify({
            "status": "healthy",
            "environment": app.config.get("ENVIRONMENT"),
            "timestamp": utcnow().isoformat(),
        })

    app.logger.info("Application initialization completed")
    return app
