"""
Security Event Analyzer

Partitions audit events into priority tiers and renders the tiered
security summary. Categorization is a pure function of the event list and
the injected ``EventCatalog``; rendering resolves actor ids to display
names through the audit service.

Settings-change events (SAST settings by default) get a detail line that
reports what changed, derived from the before/after snapshots carried in
the event content.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shared.config.logging_config import get_component_logger
from shared.schemas.audit_models import AuditEvent
from shared.schemas.event_catalog import DEFAULT_EVENT_CATALOG, EventCatalog, EventPriority
from shared.utils.time_utils import Clock, format_event_type, format_time_ago, utc_now


MAX_EVENTS_PER_TIER = 5


@dataclass
class CategorizedEvents:
    """Events partitioned by priority tier."""
    high_priority: List[AuditEvent] = field(default_factory=list)
    medium_priority: List[AuditEvent] = field(default_factory=list)
    low_priority: List[AuditEvent] = field(default_factory=list)
    all: List[AuditEvent] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            'high': len(self.high_priority),
            'medium': len(self.medium_priority),
            'low': len(self.low_priority),
            'total': len(self.all)
        }


def _humanize_setting(key: str) -> str:
    words = re.sub(r'(?<!^)(?=[A-Z])', ' ', key).replace('_', ' ').lower()
    return re.sub(r'\bsast\b', 'SAST', words)


def _describe_change(key: str, before: Any, after: Any) -> str:
    label = _humanize_setting(key)
    if isinstance(after, bool):
        # "sastEnabled" reads as "SAST enabled", a bare "enabled" as the SAST toggle
        subject = re.sub(r'\s*\benabled$', '', label) or 'SAST'
        return f"{subject} {'enabled' if after else 'disabled'}"
    return f"{label} changed from {before} to {after}"


def _unwrap_settings(snapshot: Any) -> Dict[str, Any]:
    if not isinstance(snapshot, dict):
        return {}
    # Snapshots are sometimes nested one level, e.g. {"sastSettings": {...}}
    if len(snapshot) == 1:
        only_value = next(iter(snapshot.values()))
        if isinstance(only_value, dict):
            return only_value
    return snapshot


def settings_change_details(content: Dict[str, Any]) -> List[str]:
    """
    Describe what a settings-change event changed.

    Uses the before/after snapshots when present, then a ``changes`` map of
    ``{key: {from, to}}``, then a bare ``enabled`` flag.
    """
    before = _unwrap_settings(content.get('before'))
    after = _unwrap_settings(content.get('after'))

    if before or after:
        details = []
        for key in list(before) + [k for k in after if k not in before]:
            if before.get(key) != after.get(key):
                details.append(_describe_change(key, before.get(key), after.get(key)))
        return details

    changes = content.get('changes')
    if isinstance(changes, dict) and changes:
        return [
            _describe_change(key, change.get('from'), change.get('to'))
            for key, change in changes.items()
            if isinstance(change, dict)
        ]

    if 'enabled' in content:
        return [f"SAST {'enabled' if content['enabled'] else 'disabled'}"]

    return []


class SecurityEventAnalyzer:
    """Categorizes and summarizes security-relevant audit events."""

    def __init__(
        self,
        audit_service=None,
        catalog: EventCatalog = DEFAULT_EVENT_CATALOG,
        clock: Clock = utc_now,
        logger=None
    ):
        self.audit_service = audit_service
        self.catalog = catalog
        self.clock = clock
        self.logger = logger or get_component_logger("analytics.security_event_analyzer")

    def categorize(self, events: List[AuditEvent]) -> CategorizedEvents:
        """Partition by exact event-type membership; unlisted types are low priority."""
        result = CategorizedEvents(all=list(events))

        for event in events:
            priority = self.catalog.priority_of(event.event_type)
            if priority == EventPriority.HIGH:
                result.high_priority.append(event)
            elif priority == EventPriority.MEDIUM:
                result.medium_priority.append(event)
            else:
                result.low_priority.append(event)

        self.logger.debug("Categorized security events", extra={"counts": result.counts()})
        return result

    async def summarize(self, categorized: CategorizedEvents, days: int = 7) -> str:
        """Render the tiered summary for ``days`` of events."""
        if not categorized.all:
            return f"Good news! I didn't find any security events in the last {days} days."

        message = f"I've checked the last {days} days of audit logs for security events.\n\n"

        if categorized.high_priority:
            message += f"🔴 High Priority ({len(categorized.high_priority)} events):\n"
            message += await self._render_events(categorized.high_priority[:MAX_EVENTS_PER_TIER])
            message += '\n'

        if categorized.medium_priority:
            message += f"🟠 Medium Priority ({len(categorized.medium_priority)} events):\n"
            message += await self._render_events(categorized.medium_priority[:MAX_EVENTS_PER_TIER])
            message += '\n'

        if categorized.low_priority:
            message += f"🟢 Low Priority: {len(categorized.low_priority)} events\n"
            settings_changes = [
                event for event in categorized.low_priority
                if event.event_type == self.catalog.settings_change_event
            ]
            if settings_changes:
                message += await self._render_events(settings_changes[:MAX_EVENTS_PER_TIER])
            message += '\n'

        return message

    async def _render_events(self, events: List[AuditEvent]) -> str:
        now = self.clock()
        lines = ''
        for event in events:
            user = await self._display_user(event.actor)
            time_ago = format_time_ago(event.created_at, now)
            lines += f"- {format_event_type(event.event_type)} by {user} ({time_ago})\n"

            if event.event_type == self.catalog.settings_change_event:
                for detail in settings_change_details(event.content):
                    lines += f"  {detail}\n"
        return lines

    async def _display_user(self, user_id: Optional[str]) -> str:
        if self.audit_service is None:
            return user_id or 'unknown'
        return await self.audit_service.format_user_display(user_id)
