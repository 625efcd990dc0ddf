"""
Environment management for the audit assistant.

This module provides environment detection for the different deployment
environments (development, testing, staging, production) and the defaults
that depend on it.
"""

import os
from enum import Enum
from functools import lru_cache


ENVIRONMENT_VARIABLE = "AUDIT_ASSISTANT_ENV"


class Environment(str, Enum):
    """Supported deployment environments."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @property
    def is_development(self) -> bool:
        """Check if this is development environment."""
        return self == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if this is testing environment."""
        return self == Environment.TESTING

    @property
    def is_staging(self) -> bool:
        """Check if this is staging environment."""
        return self == Environment.STAGING

    @property
    def is_production(self) -> bool:
        """Check if this is production environment."""
        return self == Environment.PRODUCTION

    @property
    def log_level(self) -> str:
        """Get default log level for environment."""
        if self.is_production:
            return "WARNING"
        elif self.is_staging:
            return "INFO"
        else:
            return "DEBUG"


@lru_cache()
def get_environment() -> Environment:
    """
    Detect the current environment.

    Reads ``AUDIT_ASSISTANT_ENV`` and falls back to development for unknown
    or missing values.
    """
    value = os.getenv(ENVIRONMENT_VARIABLE, Environment.DEVELOPMENT.value).strip().lower()

    aliases = {
        'dev': Environment.DEVELOPMENT,
        'test': Environment.TESTING,
        'stage': Environment.STAGING,
        'prod': Environment.PRODUCTION
    }
    if value in aliases:
        return aliases[value]

    try:
        return Environment(value)
    except ValueError:
        return Environment.DEVELOPMENT
