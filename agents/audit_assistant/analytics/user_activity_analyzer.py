"""
User Activity Analyzer

Builds either a roster view (who did how much) or a detailed view of one
user, resolving free-text names through the organization roster. Name
resolution tries, in order:

1. a direct match of the requested id against the event actors
2. a case-insensitive name match against the organization roster
3. a name match against the resolved identities of the event actors

A name that survives all three is reported as an unknown user together
with roster suggestions, or with the reason the roster was unavailable.
"""

import re
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from shared.config.logging_config import get_component_logger
from shared.schemas.audit_models import AuditEvent, UserActivitySummary, UserInfo, UserSummary
from shared.schemas.event_catalog import DEFAULT_EVENT_CATALOG, EventCatalog
from shared.utils.time_utils import Clock, format_event_type, format_time_ago, utc_now

from ..api.errors import AuditApiError, ERROR_RECOMMENDATIONS
from ..api.service import summarize_event_types


TOP_ACTIVITIES = 5
RECENT_ACTIONS = 5
TOP_USERS = 5
MAX_SUGGESTIONS = 10

_UUID_RE = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _newest_first(events: List[AuditEvent]) -> List[AuditEvent]:
    return sorted(events, key=lambda event: event.created_at_utc or _OLDEST, reverse=True)


def _same_name(candidate: Optional[str], wanted: str) -> bool:
    return bool(candidate) and candidate.strip().lower() == wanted.strip().lower()


def _matches_user(user: UserInfo, wanted: str) -> bool:
    return user.id == wanted.strip() or _same_name(user.name, wanted) or _same_name(user.username, wanted)


class UserActivityAnalyzer:
    """Roster and single-user activity analysis."""

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
        self.logger = logger or get_component_logger("analytics.user_activity_analyzer")

    @staticmethod
    def group_by_user(events: List[AuditEvent]) -> Dict[str, List[AuditEvent]]:
        grouped: Dict[str, List[AuditEvent]] = OrderedDict()
        for event in events:
            grouped.setdefault(event.actor, []).append(event)
        return grouped

    async def analyze(self, events: List[AuditEvent], user_id: Optional[str] = None) -> UserActivitySummary:
        """
        Analyze user activity.

        Args:
            events: Events of the look-back window
            user_id: Actor id or free-text name; None for the roster view

        Returns:
            UserActivitySummary with ``known_user`` None (roster view),
            True (resolved user) or False (unresolved name)
        """
        grouped = self.group_by_user(events)

        if not user_id:
            return self._roster_view(events, grouped)

        if user_id in grouped:
            return self._detailed_view(user_id, grouped[user_id])

        self.logger.info("Resolving user name against organization roster", extra={"requested_user": user_id})

        org_users: List[UserInfo] = []
        api_error: Optional[AuditApiError] = None
        if self.audit_service is not None:
            try:
                org_users = await self.audit_service.get_all_org_users()
            except AuditApiError as e:
                self.logger.warning(
                    f"Organization roster unavailable: {e}",
                    extra={"error_type": e.category.value}
                )
                api_error = e

        for user in org_users:
            if _matches_user(user, user_id):
                user_events = grouped.get(user.id, [])
                if user_events:
                    return self._detailed_view(user.id, user_events, user)
                return UserActivitySummary(
                    user_id=user.id,
                    user_name=user.name,
                    user_email=user.email,
                    known_user=True,
                    total_actions=0,
                    all_org_users=org_users
                )

        if org_users:
            suggestions = [user.name for user in org_users if user.name][:MAX_SUGGESTIONS]
            return UserActivitySummary(
                user_id=user_id,
                known_user=False,
                suggested_users=suggestions,
                all_org_users=org_users
            )

        # Roster empty or unavailable: try the identities behind the event actors
        if self.audit_service is not None:
            for actor, actor_events in grouped.items():
                info = await self.audit_service.get_user_info(actor)
                if _matches_user(info, user_id):
                    return self._detailed_view(actor, actor_events, info)

        return UserActivitySummary(
            user_id=user_id,
            known_user=False,
            org_users_available=False,
            api_error_type=api_error.category if api_error else None,
            api_error_description=api_error.description if api_error else None
        )

    def _detailed_view(
        self,
        user_id: str,
        events: List[AuditEvent],
        info: Optional[UserInfo] = None
    ) -> UserActivitySummary:
        ordered = _newest_first(events)
        return UserActivitySummary(
            user_id=user_id,
            user_name=info.name if info else None,
            user_email=info.email if info else None,
            known_user=True,
            total_actions=len(ordered),
            most_frequent_activities=summarize_event_types(ordered)[:TOP_ACTIVITIES],
            recent_actions=ordered[:RECENT_ACTIONS],
            all_events=ordered
        )

    def _roster_view(self, events: List[AuditEvent], grouped: Dict[str, List[AuditEvent]]) -> UserActivitySummary:
        summaries = []
        for actor, actor_events in grouped.items():
            ordered = _newest_first(actor_events)
            summaries.append(UserSummary(
                user_id=actor,
                event_count=len(actor_events),
                last_active=ordered[0].created_at_utc if ordered else None,
                event_types=summarize_event_types(actor_events)
            ))

        summaries.sort(key=lambda summary: summary.event_count, reverse=True)
        return UserActivitySummary(user_summaries=summaries, all_events=list(events))

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    async def summarize(self, summary: UserActivitySummary, user_id: Optional[str] = None, days: int = 7) -> str:
        """Render an activity summary as a chat message."""
        if summary.known_user is False:
            return self._unknown_user_message(summary, user_id or summary.user_id)

        if summary.known_user:
            display = summary.user_name or await self._display_user(summary.user_id)
            if summary.total_actions == 0:
                return (
                    f"{display} is a known user in your organization, but I didn't find any "
                    f"activity for them in the last {days} days."
                )
            return self._detailed_message(summary, display, days)

        if not summary.user_summaries:
            return f"I didn't find any user activity in the last {days} days."

        return await self._roster_message(summary, days)

    def _unknown_user_message(self, summary: UserActivitySummary, name: Optional[str]) -> str:
        message = f'I didn\'t find any user named "{name}" in your organization.'

        if summary.suggested_users:
            message += "\n\nHere are some users you can ask about:\n"
            message += ''.join(f"• {suggestion}\n" for suggestion in summary.suggested_users)
            message += "\nPlease try your query again with one of these user names."
        elif not summary.org_users_available:
            message += (
                "\n\nI also couldn't retrieve the list of users in your organization. "
                "This could be because:\n"
                "• The API key doesn't have permission to list organization members\n"
                "• The organization ID is incorrect\n"
                "• The audit API is temporarily unavailable"
            )
            if summary.api_error_description:
                message += f"\n\nDetected issue: {summary.api_error_description}"
            recommendation = ERROR_RECOMMENDATIONS.get(summary.api_error_type)
            if recommendation:
                message += f"\nRecommendation: {recommendation}"

        return message

    def _detailed_message(self, summary: UserActivitySummary, display: str, days: int) -> str:
        now = self.clock()
        message = f"Activity summary for {display} over the last {days} days:\n\n"
        message += f"Total actions: {summary.total_actions}\n"

        if summary.most_frequent_activities:
            message += "\nMost frequent activities:\n"
            for activity in summary.most_frequent_activities:
                message += f"• {format_event_type(activity.type)} ({activity.count} events)\n"

        if summary.recent_actions:
            message += "\nRecent actions:\n"
            for event in summary.recent_actions:
                line = f"- {format_event_type(event.event_type)} ({format_time_ago(event.created_at, now)})"
                if self.catalog.is_security_critical(event.event_type):
                    line += " ⚠️"
                message += line + "\n"
                message += self._action_detail(event)

        return message

    @staticmethod
    def _action_detail(event: AuditEvent) -> str:
        content = event.content
        if event.event_type == 'org.user.role.edit' and content.get('role_name'):
            return f"  Changed role to: {content['role_name']}\n"
        if event.event_type == 'org.user.invite' and content.get('email'):
            return f"  Invited user: {content['email']}\n"
        return ''

    async def _roster_message(self, summary: UserActivitySummary, days: int) -> str:
        now = self.clock()
        users = summary.user_summaries

        message = f"User activity summary for the last {days} days:\n\n"
        message += f"Active users: {len(users)}\n\n"
        message += "Most active users:\n"

        for user in users[:TOP_USERS]:
            display = await self._display_user(user.user_id)
            message += (
                f"• {display}: {user.event_count} actions "
                f"(last active: {format_time_ago(user.last_active, now)})\n"
            )

        if len(users) > TOP_USERS:
            names = [await self._display_user(user.user_id) for user in users]
            message += "\nAll users who performed actions:\n"
            message += ', '.join(names)

        return message

    async def _display_user(self, user_id: Optional[str]) -> str:
        # Free-text names and service accounts are shown as-is
        if not user_id or not _UUID_RE.match(user_id) or self.audit_service is None:
            return user_id or 'unknown user'
        return await self.audit_service.format_user_display(user_id)
