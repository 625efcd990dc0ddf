"""
Audit Service

Higher-level operations over the audit API client: look-back windows,
server-side event filters, time-range digests and cached user identity
resolution. Analyzers and the request router talk to this service, never
to the HTTP client directly.
"""

from collections import Counter as TallyCounter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from shared.config.logging_config import get_component_logger
from shared.config.settings import AuditConfig, CacheSettings
from shared.schemas.audit_models import UNKNOWN_ACTOR, AuditEvent, EventTypeCount, UserInfo
from shared.schemas.event_catalog import DEFAULT_EVENT_CATALOG, EventCatalog
from shared.utils.caching import MemoryCache
from shared.utils.time_utils import Clock, ensure_aware, is_business_hours, utc_now

from .client import AuditApiClient
from .errors import AuditApiError


@dataclass
class TimeRangeSummary:
    """Digest of the events in one time window."""
    start: datetime
    end: datetime
    total_events: int
    unique_users: List[str]
    event_type_summary: List[EventTypeCount]
    security_events: List[AuditEvent] = field(default_factory=list)
    after_hours_events: List[AuditEvent] = field(default_factory=list)
    all_events: List[AuditEvent] = field(default_factory=list)

    @property
    def unique_user_count(self) -> int:
        return len(self.unique_users)


def summarize_event_types(events: List[AuditEvent]) -> List[EventTypeCount]:
    """Event types by descending frequency; ties keep first-seen order."""
    counts = TallyCounter(event.event_type for event in events)
    return [EventTypeCount(type=event_type, count=count) for event_type, count in counts.most_common()]


class AuditService:
    """
    Audit-data operations for one organization.

    The user-info cache is owned here and shared by every analyzer that
    receives this instance.
    """

    def __init__(
        self,
        client: AuditApiClient,
        org_id: Optional[str] = None,
        group_id: Optional[str] = None,
        audit_config: Optional[AuditConfig] = None,
        cache_settings: Optional[CacheSettings] = None,
        catalog: EventCatalog = DEFAULT_EVENT_CATALOG,
        clock: Clock = utc_now,
        logger=None
    ):
        self.client = client
        self.org_id = org_id
        self.group_id = group_id
        self.audit_config = audit_config or AuditConfig()
        self.catalog = catalog
        self.clock = clock
        self.logger = logger or get_component_logger("api.service")

        cache_settings = cache_settings or CacheSettings()
        self.user_cache = MemoryCache(
            max_size=cache_settings.user_cache_size,
            default_ttl=cache_settings.user_cache_ttl_seconds
        )

        self.logger.info("Audit service initialized", extra={"org_id": org_id})

    def _validate_org_id(self, org_id: Optional[str]) -> str:
        if not org_id:
            self.logger.error("No organization ID provided")
            raise ValueError('Organization ID is required')
        return org_id

    def _window(self, days: Optional[int]):
        days = days or self.audit_config.default_days
        now = ensure_aware(self.clock())
        return days, now - timedelta(days=days), now

    # ------------------------------------------------------------------
    # Event retrieval
    # ------------------------------------------------------------------

    async def get_all_events(self, days: Optional[int] = None, org_id: Optional[str] = None) -> List[AuditEvent]:
        """All events of the last ``days`` days."""
        org_id = self._validate_org_id(org_id or self.org_id)
        days, from_date, to_date = self._window(days)

        self.logger.info(f"Fetching all events from {days} days ago", extra={"org_id": org_id})
        events = await self.client.get_all_org_audit_logs(org_id, from_date=from_date, to_date=to_date)
        self.logger.info(f"Retrieved {len(events)} events")
        return events

    async def get_security_events(self, days: Optional[int] = None, org_id: Optional[str] = None) -> List[AuditEvent]:
        """Security-critical events, filtered server-side."""
        org_id = self._validate_org_id(org_id or self.org_id)
        days, from_date, _ = self._window(days)

        self.logger.info(f"Fetching security events from {days} days ago", extra={"org_id": org_id})
        events = await self.client.get_all_org_audit_logs(
            org_id, from_date=from_date, events=list(self.catalog.security_critical)
        )
        self.logger.info(f"Retrieved {len(events)} security events")
        return events

    async def get_user_activity(
        self,
        user_id: Optional[str] = None,
        days: Optional[int] = None,
        org_id: Optional[str] = None
    ) -> List[AuditEvent]:
        """
        Events of one user, or user-administration events of everyone.

        A free-text name is passed through as a server-side filter; callers
        that need name resolution should fetch without ``user_id`` first.
        """
        org_id = self._validate_org_id(org_id or self.org_id)
        days, from_date, to_date = self._window(days)

        self.logger.info(
            f"Fetching user activity from {days} days ago",
            extra={"user_id": user_id or "all users", "org_id": org_id}
        )

        if user_id:
            events = await self.client.get_all_org_audit_logs(org_id, from_date=from_date, user_id=user_id)
        else:
            events = await self.client.get_all_org_audit_logs(
                org_id, from_date=from_date, to_date=to_date, events=list(self.catalog.user_activity)
            )

        self.logger.info(f"Retrieved {len(events)} user activity events")
        return events

    async def get_events_by_time_range(
        self,
        start: datetime,
        end: datetime,
        org_id: Optional[str] = None
    ) -> List[AuditEvent]:
        org_id = self._validate_org_id(org_id or self.org_id)

        self.logger.info("Fetching events from time range", extra={"start": start, "end": end, "org_id": org_id})
        events = await self.client.get_all_org_audit_logs(org_id, from_date=start, to_date=end)
        self.logger.info(f"Retrieved {len(events)} events for time range")
        return events

    async def get_project_events(
        self,
        project_id: str,
        days: Optional[int] = None,
        org_id: Optional[str] = None
    ) -> List[AuditEvent]:
        org_id = self._validate_org_id(org_id or self.org_id)
        if not project_id:
            raise ValueError('Project ID is required')
        days, from_date, _ = self._window(days)

        self.logger.info(
            f"Fetching project events from {days} days ago",
            extra={"project_id": project_id, "org_id": org_id}
        )
        events = await self.client.get_all_org_audit_logs(org_id, from_date=from_date, project_id=project_id)
        self.logger.info(f"Retrieved {len(events)} project events")
        return events

    async def get_group_events(self, days: Optional[int] = None, group_id: Optional[str] = None) -> List[AuditEvent]:
        """All events of the configured group."""
        group_id = group_id or self.group_id
        if not group_id:
            raise ValueError('Group ID is required')
        days, from_date, to_date = self._window(days)

        events = await self.client.get_all_group_audit_logs(group_id, from_date=from_date, to_date=to_date)
        self.logger.info(f"Retrieved {len(events)} group events", extra={"group_id": group_id})
        return events

    def is_after_hours(self, event: AuditEvent) -> bool:
        created = event.created_at_utc
        if created is None:
            return False
        return not is_business_hours(
            created,
            self.audit_config.business_hours_start,
            self.audit_config.business_hours_end,
            self.audit_config.timezone
        )

    async def get_after_hours_activity(self, days: Optional[int] = None, org_id: Optional[str] = None) -> List[AuditEvent]:
        """Events outside business hours (or on weekends) in the configured timezone."""
        all_events = await self.get_all_events(days, org_id)
        after_hours = [event for event in all_events if self.is_after_hours(event)]
        self.logger.info(f"Retrieved {len(after_hours)} after-hours events")
        return after_hours

    def summarize_time_range_events(
        self,
        events: List[AuditEvent],
        start: datetime,
        end: datetime
    ) -> TimeRangeSummary:
        """Totals, distinct actors, type frequency, security and after-hours events."""
        unique_users: List[str] = []
        for event in events:
            actor = event.actor
            if actor != UNKNOWN_ACTOR and actor not in unique_users:
                unique_users.append(actor)

        return TimeRangeSummary(
            start=start,
            end=end,
            total_events=len(events),
            unique_users=unique_users,
            event_type_summary=summarize_event_types(events),
            security_events=[e for e in events if self.catalog.is_security_critical(e.event_type)],
            after_hours_events=[e for e in events if self.is_after_hours(e)],
            all_events=list(events)
        )

    # ------------------------------------------------------------------
    # User directory
    # ------------------------------------------------------------------

    async def get_user_info(self, user_id: str) -> UserInfo:
        """
        Resolve a user id, using the cache first.

        A failed lookup degrades to an id-only ``UserInfo`` and is not cached.
        """
        cached = await self.user_cache.get(user_id)
        if cached is not None:
            return cached

        try:
            attributes = await self.client.get_user(self._validate_org_id(self.org_id), user_id)
        except AuditApiError as e:
            self.logger.warning(
                f"Error fetching user information: {e}",
                extra={"user_id": user_id, "error_type": e.description}
            )
            return UserInfo(id=user_id)

        info = UserInfo(**{**attributes, 'id': attributes.get('id') or user_id})
        await self.user_cache.set(user_id, info)
        return info

    async def format_user_display(self, user_id: Optional[str]) -> str:
        if not user_id or user_id == UNKNOWN_ACTOR:
            return 'unknown user'
        info = await self.get_user_info(user_id)
        return info.display_name

    async def get_all_org_users(self, org_id: Optional[str] = None) -> List[UserInfo]:
        """
        The organization roster.

        Raises:
            AuditApiError: when the roster cannot be fetched
        """
        org_id = self._validate_org_id(org_id or self.org_id)
        members = await self.client.list_org_users(org_id)

        users = [UserInfo(**member) for member in members]
        for user in users:
            await self.user_cache.set(user.id, user)

        self.logger.info(f"Retrieved {len(users)} organization users")
        return users

    def get_cache_info(self) -> Dict[str, Any]:
        return self.user_cache.get_cache_info()
