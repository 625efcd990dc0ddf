"""
Logging configuration for the audit assistant.

This module provides centralized logging setup with support for file rotation,
structured JSON logging and environment-specific defaults. Components do not
create module-global loggers for their own output; they receive a logger
handle in their constructor, normally built by ``get_component_logger``,
which carries the component scope as a structured field.
"""

import json
import logging
import logging.handlers
import os
import socket
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ConfigDict

from .environment import get_environment


ROOT_LOGGER_NAME = "audit_assistant"

_RESERVED_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'taskName', 'message'
}


class LoggingConfig(BaseModel):
    """Logging configuration model."""
    model_config = ConfigDict(extra='forbid')

    # Basic settings
    level: str = Field(default="INFO", description="Root logging level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Date format for log messages"
    )

    # File logging
    enable_file_logging: bool = Field(default=False)
    log_file_path: str = Field(default="logs/audit_assistant.log")
    max_file_size_mb: int = Field(default=50, ge=1, le=1000)
    backup_count: int = Field(default=5, ge=1, le=50)

    # Console logging
    enable_console_logging: bool = Field(default=True)
    console_level: str = Field(default="INFO")

    # Structured logging
    enable_json_logging: bool = Field(default=False)
    include_hostname: bool = Field(default=False)
    include_process_info: bool = Field(default=False)

    # Component-specific logging levels
    component_levels: Dict[str, str] = Field(default_factory=dict)

    # Filtering
    suppress_noisy_loggers: bool = Field(default=True)
    noisy_loggers: list[str] = Field(
        default_factory=lambda: [
            'aiohttp.access',
            'aiohttp.client',
            'urllib3.connectionpool',
            'asyncio'
        ]
    )


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    def __init__(self, config: LoggingConfig):
        super().__init__()
        self.config = config
        self.hostname = socket.gethostname() if config.include_hostname else None
        self.process_id = os.getpid() if config.include_process_info else None

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if record.stack_info:
            log_entry['stack_info'] = record.stack_info

        if self.hostname:
            log_entry['hostname'] = self.hostname

        if self.process_id:
            log_entry['process_id'] = self.process_id

        # Anything passed through ``extra=`` or a LoggerAdapter
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_FIELDS and not key.startswith('_'):
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges its scope fields with per-call ``extra``."""

    def process(self, msg, kwargs):
        extra = dict(self.extra)
        extra.update(kwargs.get('extra') or {})
        kwargs['extra'] = extra
        return msg, kwargs

    def child(self, scope: str) -> "ComponentLoggerAdapter":
        """Derive a handle for a nested scope without touching this one."""
        parent_scope = self.extra.get('component', '')
        component = f"{parent_scope}.{scope}" if parent_scope else scope
        return ComponentLoggerAdapter(self.logger, {**self.extra, 'component': component})


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Setup centralized logging configuration.

    Args:
        config: Optional logging configuration. If not provided, will use
                environment-appropriate defaults.

    Returns:
        The application root logger
    """
    if config is None:
        config = get_default_logging_config()

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)

    # Clear any existing handlers to avoid duplicates
    app_logger.handlers.clear()
    app_logger.setLevel(getattr(logging, config.level.upper()))
    app_logger.propagate = False

    if config.enable_file_logging:
        _setup_file_logging(app_logger, config)

    if config.enable_console_logging:
        _setup_console_logging(app_logger, config)

    _setup_component_levels(config)

    if config.suppress_noisy_loggers:
        _suppress_noisy_loggers(config.noisy_loggers)

    app_logger.debug(f"Logging configured for environment: {get_environment().value}")
    return app_logger


def _setup_file_logging(logger: logging.Logger, config: LoggingConfig) -> None:
    """Setup file logging with rotation."""
    log_path = Path(config.log_file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=config.log_file_path,
        maxBytes=config.max_file_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
        encoding='utf-8'
    )

    if config.enable_json_logging:
        formatter = StructuredFormatter(config)
    else:
        formatter = logging.Formatter(fmt=config.format, datefmt=config.date_format)

    file_handler.setFormatter(formatter)
    file_handler.setLevel(getattr(logging, config.level.upper()))

    logger.addHandler(file_handler)


def _setup_console_logging(logger: logging.Logger, config: LoggingConfig) -> None:
    """Setup console logging."""
    console_handler = logging.StreamHandler(sys.stdout)

    if config.enable_json_logging:
        formatter = StructuredFormatter(config)
    else:
        formatter = logging.Formatter(fmt=config.format, datefmt=config.date_format)

    console_handler.setFormatter(formatter)
    console_handler.setLevel(getattr(logging, config.console_level.upper()))

    logger.addHandler(console_handler)


def _setup_component_levels(config: LoggingConfig) -> None:
    """Setup component-specific logging levels."""
    for logger_name, level in config.component_levels.items():
        logging.getLogger(logger_name).setLevel(getattr(logging, level.upper()))


def _suppress_noisy_loggers(noisy_loggers: list[str]) -> None:
    """Suppress noisy third-party loggers."""
    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_default_logging_config() -> LoggingConfig:
    """Get default logging configuration based on environment."""
    env = get_environment()

    config_dict: Dict[str, Any] = {
        'level': env.log_level,
        'enable_console_logging': True,
        'suppress_noisy_loggers': True
    }

    if env.is_development:
        config_dict.update({
            'console_level': 'DEBUG',
            'enable_json_logging': False
        })
    elif env.is_testing:
        config_dict.update({
            'console_level': 'WARNING',
            'enable_file_logging': False,
            'enable_json_logging': False
        })
    elif env.is_production:
        config_dict.update({
            'console_level': 'WARNING',
            'enable_file_logging': True,
            'enable_json_logging': True,
            'include_hostname': True,
            'include_process_info': True,
            'max_file_size_mb': 500,
            'backup_count': 10
        })

    return LoggingConfig(**config_dict)


def get_logger(name: str) -> logging.Logger:
    """Get a logger below the application root logger."""
    if name.startswith(ROOT_LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def get_component_logger(component: str, **fields: Any) -> ComponentLoggerAdapter:
    """
    Build the logger handle passed into a component's constructor.

    Args:
        component: Scope name, e.g. 'nlp.intent_recognizer'
        **fields: Additional structured fields attached to every record

    Returns:
        LoggerAdapter carrying ``component`` as a structured field
    """
    return ComponentLoggerAdapter(get_logger(component), {'component': component, **fields})
