# payrecon/extensions.py
"""
Flask extensions initialization module.
Holds the shared SQLAlchemy handle and the optional Redis client.
"""

import logging

import redis
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
redis_client = None

logger = logging.getLogger(__name__)


def init_extensions(app):
    """Initialize all Flask extensions."""
    db.init_app(app)
    logger.info("SQLAlchemy initialized")

    if app.config.get("WEBHOOK_RATE_LIMIT_BACKEND") == "redis":
        init_redis(app)

    if app.config.get("ENVIRONMENT") in ("development", "testing") or app.config.get(
        "CREATE_TABLES_ON_START", False
    ):
        with app.app_context():
            db.create_all()
            logger.info("Database tables ensured")

    return app


def init_redis(app):
    """Initialize Redis connection for shared webhook rate counters."""
    global redis_client
    redis_url = app.config.get("REDIS_URL", "redis://localhost:6379/0")
    try:
        redis_client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        redis_client.ping()
        logger.info("Redis initialized successfully")
    except redis.ConnectionError as e:
        logger.error(f"Failed to connect to Redis: {e}")
        if app.config.get("ENVIRONMENT") == "production":
            raise
        logger.warning("Falling back to process-local webhook rate limiting")
        redis_client = None
    return redis_client


def get_redis_client():
    return redis_client
