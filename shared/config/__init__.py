"""
Configuration management for the audit assistant.

This module provides centralized configuration management with support for
environment variables, .env files and validation.
"""

from .settings import (
    Settings,
    get_settings,
    reload_settings,
    ApiConfig,
    AuditConfig,
    NlpConfig,
    CacheSettings,
    WebhookConfig,
)
from .logging_config import setup_logging, get_logger, get_component_logger, LoggingConfig
from .environment import Environment, get_environment

__all__ = [
    'Settings',
    'get_settings',
    'reload_settings',
    'ApiConfig',
    'AuditConfig',
    'NlpConfig',
    'CacheSettings',
    'WebhookConfig',
    'setup_logging',
    'get_logger',
    'get_component_logger',
    'LoggingConfig',
    'Environment',
    'get_environment'
]

__version__ = '1.0.0'
