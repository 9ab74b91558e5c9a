# payrecon/error_handlers.py
import logging
import traceback

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from payrecon.errors import BillingError

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Register all error handlers for the application"""

    @app.errorhandler(BillingError)
    def handle_billing_error(error):
        log = logger.error if error.status_code >= 500 else logger.warning
        log(
            f"{error.__class__.__name__}: {error.message} - Path: {request.path}",
            extra={"code": error.code},
        )
        response = jsonify({**error.to_dict(), "path": request.path})
        response.status_code = error.status_code
        if getattr(error, "retry_after", None) is not None:
            response.headers["Retry-After"] = str(error.retry_after)
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        logger.warning(f"{e.name}: {e.description} - Path: {request.path}")
        return jsonify({
            "error": e.name,
            "message": e.description,
            "code": e.code,
            "path": request.path,
        }), e.code

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f"Server error: {str(e)} - Path: {request.path}")
        if app.config.get("DEBUG", False):
            logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({
            "error": "Server error",
            "message": "An internal server error occurred. Please try again later.",
            "code": "INTERNAL_ERROR",
            "path": request.path,
        }), 500
