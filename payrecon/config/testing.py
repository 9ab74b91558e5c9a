from .base import BaseConfig


class TestingConfig(BaseConfig):
    TESTING = True
    ENVIRONMENT = "testing"

    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"

    GROW_PAGE_CODE = "test-page-code"
    GROW_USER_ID = "test-grow-user"
    GROW_API_BASE_URL = "https://grow.test/api"
    GROW_WEBHOOK_SECRET = None
    GROW_IP_WHITELIST = []

    APP_URL = "http://localhost:5173"
    REDIRECT_ALLOWED_HOSTS = ["rightflow.co", "app.rightflow.co", "localhost", "127.0.0.1"]

    GATEWAY_INITIAL_DELAY = 0
    GATEWAY_MAX_DELAY = 0

    CHECKOUT_MAX_PER_DAY = 10
    WEBHOOK_MAX_PER_MINUTE = 100
    WEBHOOK_RATE_LIMIT_BACKEND = "memory"

    ADMIN_API_TOKEN = "test-admin-token"
