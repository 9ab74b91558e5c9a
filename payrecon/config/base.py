import os


class ConfigurationError(Exception):
    """
    Raised when an invalid or unsupported configuration is requested.
    """
    pass


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _env_float(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _env_list(name, default=None):
    value = os.getenv(name)
    if not value:
        return list(default or [])
    return [item.strip() for item in value.split(",") if item.strip()]


class BaseConfig:
    """
    Base configuration shared by all environments.
    """

    # Flask
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.getenv("SECRET_KEY")
    ENVIRONMENT = "development"

    # Application
    APP_NAME = "Payment Reconciliation Service"
    APP_URL = os.getenv("APP_URL", "http://localhost:5173")

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///payrecon.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Redis / Celery
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_REQUESTS = False
    SENTRY_DSN = os.getenv("SENTRY_DSN")

    # Operator endpoints (webhook ledger lookup and retry)
    ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN")

    # Number of trusted reverse proxies in front of the app; 0 ignores X-Forwarded-For
    PROXY_FIX_X_FOR = _env_int("PROXY_FIX_X_FOR", 0)

    # Grow processor
    GROW_PAGE_CODE = os.getenv("GROW_PAGE_CODE", "")
    GROW_USER_ID = os.getenv("GROW_USER_ID", "")
    GROW_API_BASE_URL = os.getenv(
        "GROW_API_BASE_URL", "https://meshulam.co.il/api/light/server/1.0"
    )
    GROW_WEBHOOK_SECRET = os.getenv("GROW_WEBHOOK_SECRET")
    GROW_IP_WHITELIST = _env_list("GROW_IP_WHITELIST")

    # Outbound retry policy
    GATEWAY_MAX_ATTEMPTS = _env_int("GATEWAY_MAX_ATTEMPTS", 3)
    GATEWAY_INITIAL_DELAY = _env_float("GATEWAY_INITIAL_DELAY", 1.0)
    GATEWAY_BACKOFF_MULTIPLIER = _env_float("GATEWAY_BACKOFF_MULTIPLIER", 2.0)
    GATEWAY_MAX_DELAY = _env_float("GATEWAY_MAX_DELAY", 10.0)
    GATEWAY_TIMEOUT = _env_float("GATEWAY_TIMEOUT", 15.0)

    # Checkout rules
    REDIRECT_ALLOWED_HOSTS = _env_list(
        "REDIRECT_ALLOWED_HOSTS",
        ["rightflow.co", "app.rightflow.co", "localhost", "127.0.0.1"],
    )
    CHECKOUT_MAX_PER_DAY = _env_int("CHECKOUT_MAX_PER_DAY", 10)
    CHECKOUT_SESSION_TTL_MINUTES = _env_int("CHECKOUT_SESSION_TTL_MINUTES", 60)

    # Webhook ingestion
    WEBHOOK_MAX_PER_MINUTE = _env_int("WEBHOOK_MAX_PER_MINUTE", 100)
    WEBHOOK_RATE_LIMIT_BACKEND = os.getenv("WEBHOOK_RATE_LIMIT_BACKEND", "memory")

    # Subscription lifecycle
    GRACE_PERIOD_DAYS = _env_int("GRACE_PERIOD_DAYS", 7)
    DOUBLE_PAYMENT_WINDOW_MINUTES = _env_int("DOUBLE_PAYMENT_WINDOW_MINUTES", 60)
    FREE_PLAN_NAME = os.getenv("FREE_PLAN_NAME", "FREE")

    # Sweeper schedule (seconds)
    GRACE_SWEEP_INTERVAL = _env_int("GRACE_SWEEP_INTERVAL", 3600)
    CHECKOUT_SWEEP_INTERVAL = _env_int("CHECKOUT_SWEEP_INTERVAL", 900)

    @classmethod
    def validate(cls):
        """Return a list of configuration problems. Empty means usable."""
        issues = []
        if cls.CHECKOUT_MAX_PER_DAY < 1:
            issues.append("CHECKOUT_MAX_PER_DAY must be positive")
        if cls.WEBHOOK_MAX_PER_MINUTE < 1:
            issues.append("WEBHOOK_MAX_PER_MINUTE must be positive")
        if cls.GATEWAY_MAX_ATTEMPTS < 1:
            issues.append("GATEWAY_MAX_ATTEMPTS must be at least 1")
        if cls.PROXY_FIX_X_FOR < 0:
            issues.append("PROXY_FIX_X_FOR must not be negative")
        if cls.WEBHOOK_RATE_LIMIT_BACKEND not in ("memory", "redis"):
            issues.append("WEBHOOK_RATE_LIMIT_BACKEND must be 'memory' or 'redis'")
        return issues
