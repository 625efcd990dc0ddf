from datetime import datetime, timezone

import pytest

from agents.audit_assistant.api.client import AuditApiClient
from agents.audit_assistant.api.errors import (
    RemotePermanentError, RemoteTransientError, classify_status, error_from_status, network_error
)
from shared.config.settings import ApiConfig
from shared.schemas.audit_models import ErrorCategory


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self.reason = 'Reason'
        self.body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):
        return self.body

    async def text(self):
        return str(self.body)


class FakeSession:
    closed = False

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, path, params=None, headers=None):
        self.requests.append((method, path, params, headers))
        return self.responses.pop(0)

    async def close(self):
        self.closed = True


async def no_sleep(delay):
    return None


def make_client(responses, **config):
    session = FakeSession(responses)
    client = AuditApiClient('secret', config=ApiConfig(**config), session=session, sleep=no_sleep)
    return client, session


@pytest.mark.parametrize('status, category', [
    (None, ErrorCategory.NETWORK),
    (401, ErrorCategory.AUTHENTICATION),
    (403, ErrorCategory.PERMISSION),
    (404, ErrorCategory.NOT_FOUND),
    (408, ErrorCategory.NETWORK),
    (429, ErrorCategory.RATE_LIMITED),
    (503, ErrorCategory.SERVER),
    (418, ErrorCategory.UNKNOWN),
])
def test_classify_status(status, category):
    assert classify_status(status) == category


def test_error_from_status_picks_retryability():
    assert isinstance(error_from_status(503, 'down'), RemoteTransientError)
    assert isinstance(error_from_status(429, 'slow down'), RemoteTransientError)
    assert isinstance(error_from_status(401, 'no'), RemotePermanentError)
    assert error_from_status(418, 'teapot').description == 'API error: Status 418'
    assert network_error('timeout').category == ErrorCategory.NETWORK


def test_requires_api_key():
    with pytest.raises(ValueError):
        AuditApiClient('')


def test_format_audit_params():
    client, _ = make_client([])
    query = client.format_audit_params({
        'from_date': datetime(2026, 10, 7, 12, 0, tzinfo=timezone.utc),
        'events': ['org.policy.edit', 'org.webhook.add'],
        'user_id': 'u-1',
        'starting_after': 'cursor-1'
    })
    assert query == {
        'from': '2026-10-07T12:00:00Z',
        'events': 'org.policy.edit,org.webhook.add',
        'user_id': 'u-1',
        'next_page': 'cursor-1',
        'limit': 100,
        'order': 'DESC'
    }


async def test_search_adds_version_and_returns_body():
    body = {'data': {'items': []}, 'links': {}}
    client, session = make_client([FakeResponse(200, body)])

    assert await client.search_org_audit_logs('org-1', {}) == body

    method, path, params, headers = session.requests[0]
    assert (method, path) == ('GET', '/rest/orgs/org-1/audit_logs/search')
    assert params['version'] == '2024-10-15'


async def test_transient_status_is_retried():
    client, session = make_client([FakeResponse(503, 'down'), FakeResponse(200, {'data': []})], max_retries=2)

    assert await client.search_org_audit_logs('org-1') == {'data': []}
    assert len(session.requests) == 2


async def test_permanent_status_raises_classified_error():
    client, session = make_client([FakeResponse(403, 'forbidden')])

    with pytest.raises(RemotePermanentError) as exc_info:
        await client.search_org_audit_logs('org-1')

    assert exc_info.value.category == ErrorCategory.PERMISSION
    assert len(session.requests) == 1


async def test_get_all_org_audit_logs_walks_pages():
    first = {'data': [{'event': 'org.policy.edit'}], 'links': {'next': '/rest/x?starting_after=c1'}}
    second = {'data': [{'event': 'org.webhook.add'}], 'links': {}}
    client, session = make_client([FakeResponse(200, first), FakeResponse(200, second)])

    events = await client.get_all_org_audit_logs('org-1')

    assert [event.event_type for event in events] == ['org.policy.edit', 'org.webhook.add']
    assert session.requests[1][2]['next_page'] == 'c1'


async def test_list_org_users_uses_v1_header():
    members = [{'id': 'u-1', 'name': 'Alice', 'email': 'alice@example.com'}, {'name': 'no id'}]
    client, session = make_client([FakeResponse(200, members)])

    users = await client.list_org_users('org-1')

    assert [user['id'] for user in users] == ['u-1']
    assert session.requests[0][3] == {'snyk-version': '2024-10-15'}


async def test_get_user_flattens_attributes():
    body = {'data': {'id': 'u-1', 'attributes': {'name': 'Alice', 'email': 'alice@example.com'}}}
    client, _ = make_client([FakeResponse(200, body)])

    assert await client.get_user('org-1', 'u-1') == {
        'id': 'u-1', 'name': 'Alice', 'username': None, 'email': 'alice@example.com'
    }


async def test_close_leaves_injected_session_open():
    client, session = make_client([])
    await client.close()
    assert session.closed is False


@pytest.mark.parametrize('status', [500, 501, 503, 505, 599])
def test_every_server_error_is_transient(status):
    error = error_from_status(status, 'server trouble')
    assert isinstance(error, RemoteTransientError)
    assert error.category == ErrorCategory.SERVER


@pytest.mark.parametrize('status', [400, 401, 404, 418])
def test_client_errors_are_permanent(status):
    assert isinstance(error_from_status(status, 'no'), RemotePermanentError)
