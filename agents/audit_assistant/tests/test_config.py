import json
import logging

import pytest
from pydantic import ValidationError

from shared.config.environment import Environment, get_environment
from shared.config.logging_config import LoggingConfig, StructuredFormatter, get_component_logger
from shared.config.settings import AuditConfig, Settings, get_settings, reload_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    # Keep a developer's .env and shell from leaking into settings
    monkeypatch.chdir(tmp_path)
    for name in ('SNYK_API_KEY', 'SNYK_ORG_ID', 'SNYK_GROUP_ID', 'AUDIT_ASSISTANT_ENV'):
        monkeypatch.delenv(name, raising=False)
    get_environment.cache_clear()
    get_settings.cache_clear()
    yield
    get_environment.cache_clear()
    get_settings.cache_clear()


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv('SNYK_API_KEY', 'token-123')
    monkeypatch.setenv('SNYK_ORG_ID', 'org-1')
    monkeypatch.setenv('AUDIT__BUSINESS_HOURS_START', '9')
    monkeypatch.setenv('WEBHOOK__PORT', '8080')

    settings = Settings()

    assert settings.api_key == 'token-123'
    assert settings.org_id == 'org-1'
    assert settings.audit.business_hours_start == 9
    assert settings.audit.default_days == 7
    assert settings.webhook.port == 8080
    assert 'token-123' not in repr(settings)


def test_get_settings_requires_credentials(monkeypatch):
    with pytest.raises(ValueError, match='SNYK_API_KEY, SNYK_ORG_ID'):
        get_settings()

    monkeypatch.setenv('SNYK_API_KEY', 'token-123')
    monkeypatch.setenv('SNYK_ORG_ID', 'org-1')
    assert reload_settings().org_id == 'org-1'


def test_business_hours_must_be_ordered():
    with pytest.raises(ValidationError):
        AuditConfig(business_hours_start=19, business_hours_end=8)


@pytest.mark.parametrize('value, expected', [
    ('prod', Environment.PRODUCTION),
    ('Testing', Environment.TESTING),
    ('nonsense', Environment.DEVELOPMENT),
])
def test_environment_detection(monkeypatch, value, expected):
    monkeypatch.setenv('AUDIT_ASSISTANT_ENV', value)
    assert get_environment() == expected


def test_component_logger_scopes(caplog):
    logger = get_component_logger('integration').child('router')

    with caplog.at_level(logging.INFO, logger='audit_assistant'):
        logger.info('routing', extra={'intent': 'help_request'})

    record = caplog.records[-1]
    assert record.name == 'audit_assistant.integration'
    assert record.component == 'integration.router'
    assert record.intent == 'help_request'


def test_structured_formatter_includes_extra_fields():
    record = logging.LogRecord('audit_assistant.api', logging.WARNING, __file__, 10, 'slow page %s', (3,), None)
    record.org_id = 'org-1'

    entry = json.loads(StructuredFormatter(LoggingConfig()).format(record))

    assert entry['message'] == 'slow page 3'
    assert entry['level'] == 'WARNING'
    assert entry['org_id'] == 'org-1'
    assert 'hostname' not in entry
