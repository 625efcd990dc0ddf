from datetime import datetime, timedelta, timezone

import pytest

from shared.schemas.audit_models import AuditEvent, UserInfo
from shared.utils.metrics import get_metrics_collector


# A Wednesday
NOW = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


def _make_event(event_type, user_id='user-1', hours_ago=1, created_at=None, **content):
    return AuditEvent(
        event_type=event_type,
        user_id=user_id,
        org_id='org-1',
        created_at=created_at or NOW - timedelta(hours=hours_ago),
        content=content
    )


class FakeAuditService:
    """In-memory stand-in for AuditService."""

    def __init__(self, events=None, users=None, roster_error=None, directory=None):
        self.events = list(events or [])
        self.users = list(users or [])
        self.roster_error = roster_error
        self.directory = directory or {}
        self.calls = []

    async def get_all_events(self, days=None, org_id=None):
        self.calls.append(('get_all_events', days))
        return list(self.events)

    async def get_security_events(self, days=None, org_id=None):
        self.calls.append(('get_security_events', days))
        return list(self.events)

    async def get_user_activity(self, user_id=None, days=None, org_id=None):
        self.calls.append(('get_user_activity', user_id, days))
        return list(self.events)

    async def get_all_org_users(self, org_id=None):
        self.calls.append(('get_all_org_users',))
        if self.roster_error is not None:
            raise self.roster_error
        return list(self.users)

    async def get_user_info(self, user_id):
        return self.directory.get(user_id) or UserInfo(id=user_id)

    async def format_user_display(self, user_id):
        if not user_id or user_id == 'unknown':
            return 'unknown user'
        return (await self.get_user_info(user_id)).display_name


class FakeAuditClient:
    """Stand-in for AuditApiClient that records calls and serves canned events."""

    def __init__(self, events=None, users=None, user_error=None):
        self.events = list(events or [])
        self.users = list(users or [])
        self.user_error = user_error
        self.calls = []

    async def get_all_org_audit_logs(self, org_id, **params):
        self.calls.append(('get_all_org_audit_logs', org_id, params))
        return list(self.events)

    async def get_all_group_audit_logs(self, group_id, **params):
        self.calls.append(('get_all_group_audit_logs', group_id, params))
        return list(self.events)

    async def get_user(self, org_id, user_id):
        self.calls.append(('get_user', org_id, user_id))
        if self.user_error is not None:
            raise self.user_error
        return {'id': user_id, 'name': f"Name {user_id}", 'username': user_id, 'email': f"{user_id}@example.com"}

    async def list_org_users(self, org_id):
        self.calls.append(('list_org_users', org_id))
        return list(self.users)


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset_all()
    yield


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def make_event():
    return _make_event


@pytest.fixture
def fake_service():
    return FakeAuditService


@pytest.fixture
def fake_client():
    return FakeAuditClient
