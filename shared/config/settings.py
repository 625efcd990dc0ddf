"""
Centralized settings management for the audit assistant.

Settings are loaded from environment variables and ``.env`` files by
pydantic-settings. Components receive a ``Settings`` instance (or one of its
sub-configurations) through their constructors and never read the
environment directly.
"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .environment import Environment, get_environment
from .logging_config import LoggingConfig


class ApiConfig(BaseModel):
    """Remote audit API connection configuration."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    base_url: str = Field(default="https://api.snyk.io", description="Audit API base URL")
    api_version: str = Field(default="2024-10-15", description="REST API version parameter")

    # Request behavior
    timeout_seconds: float = Field(default=15.0, ge=1.0, le=300.0)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    max_retry_delay_seconds: float = Field(default=30.0, ge=0.0, le=600.0)

    # Pagination
    page_limit: int = Field(default=100, ge=1, le=1000)
    max_pages: int = Field(default=100, ge=1, le=10000)


class AuditConfig(BaseModel):
    """Analysis defaults applied to audit queries."""
    model_config = ConfigDict(extra='forbid')

    default_days: int = Field(default=7, ge=1, le=365)
    suspicious_default_days: int = Field(default=2, ge=1, le=365)
    business_hours_start: int = Field(default=8, ge=0, le=23)
    business_hours_end: int = Field(default=18, ge=0, le=23)
    timezone: str = Field(default="UTC", description="IANA timezone for business-hours checks")
    volume_threshold: int = Field(default=5, ge=1)

    @model_validator(mode='after')
    def validate_business_hours(self):
        if self.business_hours_start > self.business_hours_end:
            raise ValueError('business_hours_start cannot be after business_hours_end')
        return self


class NlpConfig(BaseModel):
    """Intent handling thresholds."""
    model_config = ConfigDict(extra='forbid')

    confidence_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    clarification_floor: float = Field(default=0.2, ge=0.0, le=1.0)


class CacheSettings(BaseModel):
    """User-info and conversation cache configuration."""
    model_config = ConfigDict(extra='forbid')

    user_cache_size: int = Field(default=1000, ge=1, le=100000)
    user_cache_ttl_seconds: Optional[int] = Field(default=3600, ge=1)
    conversation_cache_size: int = Field(default=1000, ge=1, le=100000)
    conversation_ttl_seconds: Optional[int] = Field(default=1800, ge=1)


class WebhookConfig(BaseModel):
    """Webhook channel configuration."""
    model_config = ConfigDict(extra='forbid')

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    auth_token: Optional[SecretStr] = Field(default=None)


class Settings(BaseSettings):
    """
    Main application settings.

    Inherits from BaseSettings to automatically load from environment
    variables and .env files. Nested sections use ``__`` as delimiter,
    e.g. ``AUDIT__BUSINESS_HOURS_START=9``.
    """
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        env_nested_delimiter='__',
        extra='ignore',
        case_sensitive=False
    )

    # Environment
    environment: Environment = Field(default_factory=get_environment)
    debug: bool = Field(default=False)

    # Credentials
    SNYK_API_KEY: Optional[SecretStr] = Field(default=None)
    SNYK_ORG_ID: Optional[str] = Field(default=None)
    SNYK_GROUP_ID: Optional[str] = Field(default=None)

    # Component configurations
    api: ApiConfig = Field(default_factory=ApiConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    nlp: NlpConfig = Field(default_factory=NlpConfig)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('environment', mode='before')
    @classmethod
    def parse_environment(cls, v):
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @property
    def api_key(self) -> Optional[str]:
        """Plain API key value, if configured."""
        return self.SNYK_API_KEY.get_secret_value() if self.SNYK_API_KEY else None

    @property
    def org_id(self) -> Optional[str]:
        return self.SNYK_ORG_ID

    def validate_required_credentials(self) -> List[str]:
        """
        Validate required credentials are present.

        Returns list of missing environment variables.
        """
        missing = []

        if not self.api_key:
            missing.append('SNYK_API_KEY')
        if not self.SNYK_ORG_ID:
            missing.append('SNYK_ORG_ID')

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get global settings instance.

    Uses LRU cache to ensure singleton behavior.
    """
    settings = Settings()
    logger = logging.getLogger(__name__)

    missing_creds = settings.validate_required_credentials()
    if missing_creds:
        logger.error(f"Missing required credentials: {', '.join(missing_creds)}")
        raise ValueError(f"Missing required environment variables: {', '.join(missing_creds)}")

    logger.info(f"Settings loaded for environment: {settings.environment.value}")
    return settings


def reload_settings() -> Settings:
    """
    Reload settings from environment/files.

    Useful for testing or when configuration changes at runtime.
    """
    get_settings.cache_clear()
    return get_settings()
