import os

from .base import BaseConfig, ConfigurationError
from .development import DevelopmentConfig
from .production import ProductionConfig
from .testing import TestingConfig

CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config(name=None):
    """
    Resolve and return the correct configuration class
    based on the APP_ENV environment variable.

    Supported values:
    - development
    - production
    - testing
    """

    env = (name or os.getenv("APP_ENV", "development")).lower()

    try:
        return CONFIGS[env]
    except KeyError:
        raise ConfigurationError(f"Invalid APP_ENV value: {env}")


__all__ = [
    "BaseConfig",
    "ConfigurationError",
    "DevelopmentConfig",
    "ProductionConfig",
    "TestingConfig",
    "get_config",
]
