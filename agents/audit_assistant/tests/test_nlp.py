import pytest

from agents.audit_assistant.nlp.entity_extractor import EntityExtractor
from agents.audit_assistant.nlp.intent_recognizer import IntentRecognizer
from shared.schemas.audit_models import IntentType


@pytest.fixture
def recognizer():
    return IntentRecognizer()


@pytest.fixture
def extractor():
    return EntityExtractor()


@pytest.mark.parametrize('message, intent', [
    ('Who modified our integrations this week?', IntentType.EVENT_BY_USER_QUERY),
    ('who changed policies', IntentType.EVENT_BY_USER_QUERY),
    ('Which users deleted webhooks?', IntentType.EVENT_BY_USER_QUERY),
    ('Show me recent security events', IntentType.SECURITY_EVENTS_QUERY),
    ('Were there any policy changes recently?', IntentType.SECURITY_EVENTS_QUERY),
    ('What has alice been doing?', IntentType.USER_ACTIVITY_QUERY),
    ('Show me user activity', IntentType.USER_ACTIVITY_QUERY),
    ('Any suspicious activity in the last 24 hours?', IntentType.SUSPICIOUS_ACTIVITY_QUERY),
    ('Show me after-hours activity', IntentType.SUSPICIOUS_ACTIVITY_QUERY),
    ('What happened last night?', IntentType.TIME_BASED_QUERY),
    ('weekend activity', IntentType.TIME_BASED_QUERY),
    ('help', IntentType.HELP_REQUEST),
    ('What can you do?', IntentType.HELP_REQUEST),
])
def test_supported_phrasings(recognizer, message, intent):
    result = recognizer.recognize(message)
    assert result.intent == intent
    assert result.confidence >= 0.3
    assert result.message == message


@pytest.mark.parametrize('message', ['', '   ', None, 42, ['help']])
def test_empty_or_non_text_is_help(recognizer, message):
    result = recognizer.recognize(message)
    assert result.intent == IntentType.HELP_REQUEST
    assert result.confidence == 1.0


def test_pattern_confidence_is_capped(recognizer):
    assert recognizer.recognize('help').confidence <= 0.99


def test_keyword_fallback(recognizer):
    result = recognizer.recognize('anything unusual or strange?')
    assert result.intent == IntentType.SUSPICIOUS_ACTIVITY_QUERY
    assert 0.3 <= result.confidence <= 0.95


def test_unrecognized_text_defaults_to_help(recognizer):
    result = recognizer.recognize('zzz qqq')
    assert result.intent == IntentType.HELP_REQUEST
    assert result.confidence == 1.0


def test_extracts_user_name(extractor):
    assert extractor.extract('What has Alice been doing?') == {'user_id': 'Alice'}


def test_time_period_is_not_a_count_limit(extractor):
    assert extractor.extract('last 3 weeks') == {'time_period': '3 weeks'}


def test_extracts_count_limit(extractor):
    assert extractor.extract('top 5 results') == {'count_limit': 5}


def test_extracts_event_type_and_period(extractor):
    entities = extractor.extract('Who modified our integrations this week?')
    assert entities['event_type'] == 'modified our integrations'
    assert entities['time_period'] == 'this week'


def test_extracts_named_ranges(extractor):
    assert extractor.extract('show me after-hours logs')['time_range'] == 'after-hours'
    assert extractor.extract('what happened last night')['time_range'] == 'last night'


def test_policy_changes_event_type(extractor):
    assert extractor.extract('any policy changes?')['event_type'] == 'policy'


def test_secondary_time_patterns(extractor):
    assert extractor.extract('logs since last monday') == {'time_period': 'since last monday'}


@pytest.mark.parametrize('message', ['', None, 3])
def test_extract_handles_invalid_input(extractor, message):
    assert extractor.extract(message) == {}
