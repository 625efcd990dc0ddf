import random
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from agents.audit_assistant.api.service import AuditService
from agents.audit_assistant.integration.conversation_handler import (
    CLARIFICATION_PREFIX, FALLBACK_RESPONSES, ConversationHandler
)
from agents.audit_assistant.integration.request_router import HELP_MESSAGE, NOT_INITIALIZED_MESSAGE, RequestRouter
from agents.audit_assistant.integration.response_formatter import ResponseFormat, ResponseFormatter
from agents.audit_assistant.integration.webhook import create_app
from shared.config.settings import CacheSettings, WebhookConfig
from shared.schemas.audit_models import ConversationContext, IntentResult, IntentType, NlpContext
from shared.utils.metrics import get_metrics_collector


class ExplodingService:
    async def get_all_events(self, days=None, org_id=None):
        raise RuntimeError('database on fire')

    async def get_security_events(self, days=None, org_id=None):
        raise RuntimeError('timeout talking to API')


class FixedRecognizer:
    def __init__(self, intent, confidence):
        self.intent = intent
        self.confidence = confidence

    def recognize(self, message):
        return IntentResult(intent=self.intent, confidence=self.confidence, message=message)


def nlp_context(message):
    return ConversationContext(nlp=NlpContext(original_message=message))


# ----------------------------------------------------------------------
# Router
# ----------------------------------------------------------------------

async def test_uninitialized_router():
    response = await RequestRouter(None).handle_request(IntentType.HELP_REQUEST, {})
    assert response.success is False
    assert response.message == NOT_INITIALIZED_MESSAGE


async def test_help_workflow(fake_service):
    response = await RequestRouter(fake_service()).handle_request(IntentType.HELP_REQUEST)
    assert response.message == HELP_MESSAGE
    assert response.success is True


async def test_workflow_errors_become_unsuccessful_responses():
    router = RequestRouter(ExplodingService())

    response = await router.handle_request(IntentType.SUSPICIOUS_ACTIVITY_QUERY, {})

    assert response.success is False
    assert response.message == 'I encountered an error: database on fire'


async def test_security_workflow_error_message():
    response = await RequestRouter(ExplodingService()).handle_request(IntentType.SECURITY_EVENTS_QUERY, {})
    assert response.success is False
    assert response.message == 'I encountered an error analyzing security events: timeout talking to API'


async def test_event_by_user_lists_distinct_actors(fake_service, make_event):
    service = fake_service(events=[
        make_event('org.integration.edit', user_id='alice'),
        make_event('org.integration.create', user_id='bob'),
        make_event('org.integration.delete', user_id='alice'),
        make_event('org.policy.edit', user_id='carol'),
    ])
    router = RequestRouter(service)

    response = await router.handle_request(
        IntentType.EVENT_BY_USER_QUERY,
        {'event_type': 'modified our integrations', 'time_period': 'this week'},
        nlp_context('Who modified our integrations this week?')
    )

    assert response.message == (
        "Here are the users who performed 'modified our integrations' actions in the last 7 days:\n\n"
        "• alice\n• bob\n"
    )
    assert response.data['users'] == ['alice', 'bob']
    assert len(response.data['events']) == 3
    assert service.calls == [('get_all_events', 7)]


async def test_event_by_user_sniffs_keyword_from_message(fake_service, make_event):
    service = fake_service(events=[make_event('org.webhook.add', user_id='dave')])

    response = await RequestRouter(service).handle_request(
        IntentType.EVENT_BY_USER_QUERY, {}, nlp_context('who touched the webhook?')
    )

    assert "performed 'webhook' actions" in response.message
    assert "• dave" in response.message


async def test_event_by_user_needs_an_event_type(fake_service):
    response = await RequestRouter(fake_service()).handle_request(
        IntentType.EVENT_BY_USER_QUERY, {}, nlp_context('who did it?')
    )
    assert response.message.startswith("I can search for who performed an action")


async def test_event_by_user_unknown_phrase(fake_service):
    response = await RequestRouter(fake_service()).handle_request(
        IntentType.EVENT_BY_USER_QUERY, {'event_type': 'deleted the database'}, nlp_context('')
    )
    assert response.message == (
        'I\'m not sure how to search for events related to "deleted the database". '
        'Try asking about integrations, policies, or users.'
    )


async def test_event_by_user_without_matches(fake_service, make_event):
    service = fake_service(events=[make_event('org.policy.edit')])
    response = await RequestRouter(service).handle_request(
        IntentType.EVENT_BY_USER_QUERY, {'event_type': 'webhook'}, nlp_context('')
    )
    assert response.message == "I didn't find any users who performed 'webhook' actions in the last 7 days."


async def test_user_activity_stop_word_means_all_users(fake_service, make_event):
    service = fake_service(events=[make_event('org.user.add', user_id='u-1')])

    response = await RequestRouter(service).handle_request(
        IntentType.USER_ACTIVITY_QUERY, {'user_id': 'activity'}
    )

    assert service.calls[0] == ('get_user_activity', None, 7)
    assert response.message.startswith("User activity summary for the last 7 days:")


async def test_user_activity_name_fetches_full_window(fake_service, make_event):
    service = fake_service(events=[make_event('org.user.add', user_id='u-1')])

    response = await RequestRouter(service).handle_request(
        IntentType.USER_ACTIVITY_QUERY, {'user_id': 'Alice', 'time_period': 'last month'}
    )

    assert service.calls[0] == ('get_all_events', 30)
    assert 'I didn\'t find any user named "Alice"' in response.message
    assert response.data['known_user'] is False


async def test_suspicious_workflow_defaults_to_two_days(fake_service, make_event):
    service = fake_service(events=[
        make_event('org.webhook.add', user_id='bob', created_at=datetime(2026, 10, 14, 3, 0, tzinfo=timezone.utc))
    ])

    response = await RequestRouter(service).handle_request(IntentType.SUSPICIOUS_ACTIVITY_QUERY, {})

    assert service.calls == [('get_all_events', 2)]
    assert "After-hours activity: webhook added by user bob at 03:00:00" in response.message
    assert response.data[0]['type'] == 'after_hours_activity'


async def test_time_based_digest(fake_client, make_event, clock):
    events = [
        make_event('org.project.add', user_id='u-1'),
        make_event('org.project.add', user_id='u-2'),
        make_event('org.policy.delete', user_id='u-1', created_at=datetime(2026, 10, 13, 22, 15, tzinfo=timezone.utc)),
    ]
    client = fake_client(events=events)
    service = AuditService(client, org_id='org-1', clock=clock)
    router = RequestRouter(service, clock=clock)

    response = await router.handle_request(IntentType.TIME_BASED_QUERY, {'time_range': 'last night'})

    params = client.calls[0][2]
    assert params['from_date'] == datetime(2026, 10, 13, 18, 0, tzinfo=timezone.utc)
    assert params['to_date'] == datetime(2026, 10, 14, 6, 0, tzinfo=timezone.utc)
    assert response.message.startswith("Audit log summary for 2026-10-13 18:00 UTC - 2026-10-14 06:00 UTC:\n\n")
    assert "Total events: 3\nActive users: 2\n" in response.message
    assert "• 2 project added events\n" in response.message
    assert "\nSecurity-related events: 1\n• policy deleted by u-1 at 22:15:00 ⚠️\n" in response.message
    assert response.data['total_events'] == 3


# ----------------------------------------------------------------------
# Conversation handler
# ----------------------------------------------------------------------

async def test_process_message_end_to_end(fake_service, make_event):
    service = fake_service(events=[make_event('org.integration.edit', user_id='alice')])
    handler = ConversationHandler(RequestRouter(service))

    response = await handler.process_message('Who modified our integrations this week?')

    assert response.success is True
    assert "• alice" in response.message
    assert response.fallback is None


async def test_low_confidence_question_gets_clarification(fake_service):
    handler = ConversationHandler(
        RequestRouter(fake_service()),
        intent_recognizer=FixedRecognizer(IntentType.HELP_REQUEST, 0.25)
    )

    response = await handler.process_message('what now')

    assert response.clarification is True
    assert response.message == CLARIFICATION_PREFIX + HELP_MESSAGE


async def test_low_confidence_statement_gets_fallback(fake_service):
    handler = ConversationHandler(
        RequestRouter(fake_service()),
        intent_recognizer=FixedRecognizer(IntentType.SECURITY_EVENTS_QUERY, 0.1),
        rng=random.Random(0)
    )

    response = await handler.process_message('blah blah')

    assert response.fallback is True
    assert response.message in FALLBACK_RESPONSES
    assert response.to_dict()['fallback'] is True


async def test_process_message_never_raises(fake_service):
    class BrokenRecognizer:
        def recognize(self, message):
            raise RuntimeError('regex exploded')

    handler = ConversationHandler(RequestRouter(fake_service()), intent_recognizer=BrokenRecognizer())

    response = await handler.process_message('help')

    assert response.success is False
    assert response.message == 'Sorry, I encountered an error: regex exploded'


async def test_context_history_is_remembered(fake_service):
    handler = ConversationHandler(RequestRouter(fake_service()))
    context = {'platform_user_id': 'U1', 'channel_id': 'C1'}

    await handler.process_message('help', context)

    remembered = await handler.get_conversation('C1:U1')
    assert remembered.intent == IntentType.HELP_REQUEST
    with_history = await handler._with_history(ConversationContext(**context))
    assert with_history.previous_intent == IntentType.HELP_REQUEST


async def test_conversation_cache_evicts_least_recent(fake_service):
    handler = ConversationHandler(
        RequestRouter(fake_service()),
        cache_settings=CacheSettings(conversation_cache_size=2)
    )

    for user in ('U1', 'U2', 'U3'):
        await handler.process_message('help', {'platform_user_id': user, 'channel_id': 'C1'})

    assert len(handler.conversations) == 2
    assert await handler.get_conversation('C1:U1') is None
    assert (await handler.get_conversation('C1:U3')).intent == IntentType.HELP_REQUEST


async def test_conversation_history_expires(fake_service):
    moments = [datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)]
    handler = ConversationHandler(
        RequestRouter(fake_service()),
        cache_settings=CacheSettings(conversation_ttl_seconds=60),
        clock=lambda: moments[-1]
    )
    context = {'platform_user_id': 'U1', 'channel_id': 'C1'}

    await handler.process_message('help', context)
    moments.append(datetime(2026, 10, 14, 12, 5, tzinfo=timezone.utc))

    assert await handler.get_conversation('C1:U1') is None


async def test_suspicious_workflow_tolerates_non_string_actors(fake_service, make_event):
    service = fake_service(events=[
        make_event('org.policy.edit', user_id=None, created_at=datetime(2026, 10, 14, 3, 0, tzinfo=timezone.utc),
                   performed_by=42),
        make_event('org.policy.edit', user_id=None, created_at=datetime(2026, 10, 14, 3, 0, tzinfo=timezone.utc),
                   performed_by={'id': 'nested'}),
    ])

    response = await RequestRouter(service).handle_request(IntentType.SUSPICIOUS_ACTIVITY_QUERY, {})

    assert response.success is True
    assert [anomaly['user'] for anomaly in response.data] == ['42', 'unknown']


# ----------------------------------------------------------------------
# Formatter and webhook
# ----------------------------------------------------------------------

def test_api_response_data_is_json_safe(make_event):
    response = ResponseFormatter().format_api_response('ok', data={'events': [make_event('org.policy.edit')]})
    assert response.data['events'][0]['event_type'] == 'org.policy.edit'
    assert isinstance(response.data['events'][0]['created_at'], str)


@pytest.fixture
def webhook_client(fake_service):
    handler = ConversationHandler(RequestRouter(fake_service()))
    app = create_app(handler, WebhookConfig(auth_token='s3cret'))
    return TestClient(app)


def test_health(webhook_client):
    response = webhook_client.get('/health')
    assert response.status_code == 200
    assert response.json() == {'status': 'ok', 'initialized': True}


def test_webhook_auth(webhook_client):
    assert webhook_client.post('/webhook', json={'message': 'help'}).status_code == 401
    assert webhook_client.post(
        '/webhook', json={'message': 'help'}, headers={'Authorization': 'Bearer wrong'}
    ).status_code == 403


def test_webhook_rejects_empty_message(webhook_client):
    response = webhook_client.post('/webhook', json={'message': '  '}, headers={'Authorization': 'Bearer s3cret'})
    assert response.status_code == 400


def test_webhook_answers(webhook_client):
    response = webhook_client.post(
        '/webhook',
        json={'message': 'help', 'context': {'channel_id': 'C1'}},
        headers={'Authorization': 'Bearer s3cret'}
    )

    assert response.status_code == 200
    body = response.json()
    assert body['success'] is True
    assert body['message'] == HELP_MESSAGE
    assert 'timestamp' in body


def test_webhook_without_token_is_open(fake_service):
    handler = ConversationHandler(RequestRouter(fake_service()))
    client = TestClient(create_app(handler))
    assert client.post('/webhook', json={'message': 'help'}).status_code == 200


async def test_message_metrics_are_recorded(fake_service):
    handler = ConversationHandler(RequestRouter(fake_service()))
    await handler.process_message('help')

    summary = get_metrics_collector().get_summary()
    assert summary['counters']['conversation.messages_total'] == 1
    assert summary['counters']['conversation.process_message_calls'] == 1
    assert summary['timers']['conversation.process_message_duration']['count'] == 1


def test_render_formats():
    formatter = ResponseFormatter()
    failure = formatter.format_error(ValueError('bad org'))

    assert formatter.render(failure, ResponseFormat.TEXT) == '❌ I encountered an error: bad org'
    assert formatter.render(failure)['success'] is False
