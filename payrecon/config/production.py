from .base import BaseConfig


class ProductionConfig(BaseConfig):
    """
    Production configuration.

    Unsigned webhooks are always rejected here, so a missing
    GROW_WEBHOOK_SECRET is a startup failure rather than a runtime surprise.
    """

    DEBUG = False
    ENVIRONMENT = "production"

    @classmethod
    def validate(cls):
        issues = super().validate()
        if not cls.SECRET_KEY:
            issues.append("SECRET_KEY must be set in production")
        if not cls.GROW_WEBHOOK_SECRET:
            issues.append("GROW_WEBHOOK_SECRET must be set in production")
        if not cls.GROW_PAGE_CODE:
            issues.append("GROW_PAGE_CODE must be set in production")
        if cls.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            issues.append("SQLite is not suitable for production")
        return issues
