"""
Request Router

Maps a recognized intent plus its entities to one workflow: fetch the
event window, run the matching analyzer, render the message. Every
workflow exception is converted into an unsuccessful response here, so
nothing escapes to the delivery channel.
"""

import re
from typing import Awaitable, Callable, Dict, List, Optional

from shared.config.logging_config import get_component_logger
from shared.config.settings import AuditConfig
from shared.schemas.audit_models import (
    UNKNOWN_ACTOR, ChatResponse, ConversationContext, EntityMap, EntityType, IntentType
)
from shared.schemas.event_catalog import DEFAULT_EVENT_CATALOG, EventCatalog
from shared.utils.metrics import get_metrics_collector
from shared.utils.time_utils import (
    Clock, days_from_time_period, format_clock_time, format_datetime, format_event_type,
    get_zone, parse_time_range, utc_now
)

from ..analytics.anomaly_detector import AnomalyDetector
from ..analytics.security_event_analyzer import SecurityEventAnalyzer
from ..analytics.user_activity_analyzer import UserActivityAnalyzer
from .response_formatter import ResponseFormatter


NOT_INITIALIZED_MESSAGE = "I'm having trouble connecting to Snyk. Please check the API configuration."

HELP_MESSAGE = """I can help you monitor Snyk audit logs for security events and user activities. Try asking me:

• "Show me recent security events"
• "Any suspicious activity in the last 24 hours?"
• "What has [username] been doing?"
• "Were there any policy changes recently?"
• "Show me after-hours activity"
• "Who modified our integrations this week?"

I can search by time period, user, event type, or security priority. What would you like to know?"""

# Phrases sniffed from the raw message when no event type was extracted
EVENT_KEYWORDS = ['integration', 'policy', 'webhook', 'user', 'service account', 'sast settings', 'project']

# user_id values that are artifacts of the extractor rather than names
USER_STOP_WORDS = frozenset({
    'activity', 'activities', 'actions', 'behavior', 'behaviour',
    'been', 'the', 'everyone', 'anyone', 'all'
})

_UUID_RE = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)

MAX_NOTABLE_TYPES = 5
MAX_SECURITY_HIGHLIGHTS = 3


class RequestRouter:
    """
    Routes intents to audit workflows.

    Args:
        audit_service: ``AuditService``; None leaves the router uninitialized
        security_analyzer, user_analyzer, anomaly_detector: analyzers, built
            around ``audit_service`` when omitted
    """

    def __init__(
        self,
        audit_service=None,
        security_analyzer: Optional[SecurityEventAnalyzer] = None,
        user_analyzer: Optional[UserActivityAnalyzer] = None,
        anomaly_detector: Optional[AnomalyDetector] = None,
        formatter: Optional[ResponseFormatter] = None,
        audit_config: Optional[AuditConfig] = None,
        catalog: EventCatalog = DEFAULT_EVENT_CATALOG,
        clock: Clock = utc_now,
        logger=None
    ):
        self.logger = logger or get_component_logger("integration.request_router")
        self.audit_service = audit_service
        self.audit_config = audit_config or AuditConfig()
        self.catalog = catalog
        self.clock = clock
        self.metrics = get_metrics_collector()

        self.formatter = formatter or ResponseFormatter(logger=self.logger.child("formatter"))
        self.security_analyzer = security_analyzer or SecurityEventAnalyzer(
            audit_service, catalog=catalog, clock=clock, logger=self.logger.child("security")
        )
        self.user_analyzer = user_analyzer or UserActivityAnalyzer(
            audit_service, catalog=catalog, clock=clock, logger=self.logger.child("users")
        )
        self.anomaly_detector = anomaly_detector or AnomalyDetector(
            audit_service, audit_config=self.audit_config, catalog=catalog, logger=self.logger.child("anomalies")
        )

        self._workflows: Dict[IntentType, Callable[[EntityMap, ConversationContext], Awaitable[ChatResponse]]] = {
            IntentType.EVENT_BY_USER_QUERY: self._handle_event_by_user_query,
            IntentType.SECURITY_EVENTS_QUERY: self._handle_security_events_query,
            IntentType.USER_ACTIVITY_QUERY: self._handle_user_activity_query,
            IntentType.SUSPICIOUS_ACTIVITY_QUERY: self._handle_suspicious_activity_query,
            IntentType.TIME_BASED_QUERY: self._handle_time_based_query,
            IntentType.HELP_REQUEST: self._handle_help_request,
        }

    @property
    def is_initialized(self) -> bool:
        return self.audit_service is not None

    async def handle_request(
        self,
        intent: IntentType,
        entities: Optional[EntityMap] = None,
        context: Optional[ConversationContext] = None
    ) -> ChatResponse:
        """Run the workflow for ``intent``; never raises."""
        if not self.is_initialized:
            return self.formatter.format_api_response(NOT_INITIALIZED_MESSAGE, success=False)

        entities = entities or {}
        context = context or ConversationContext()
        self.metrics.counter(f"router.{intent.value}").increment()

        workflow = self._workflows.get(intent)
        if workflow is None:
            return self.formatter.format_api_response(
                "I'm not sure how to help with that. Try asking about security events, "
                "user activity, or suspicious behavior."
            )

        try:
            return await workflow(entities, context)
        except Exception as e:
            self.logger.exception(f"Error handling request: {e}", extra={"intent": intent.value})
            self.metrics.counter("router.errors").increment()
            return self.formatter.format_error(e)

    def _days(self, entities: EntityMap, default: Optional[int] = None) -> int:
        return days_from_time_period(
            entities.get(EntityType.TIME_PERIOD.value),
            default or self.audit_config.default_days
        )

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    async def _handle_event_by_user_query(self, entities: EntityMap, context: ConversationContext) -> ChatResponse:
        days = self._days(entities)
        event_type = entities.get(EntityType.EVENT_TYPE.value)

        if not event_type:
            original_message = (context.nlp.original_message if context.nlp else '').lower()
            event_type = next((keyword for keyword in EVENT_KEYWORDS if keyword in original_message), None)

        if not event_type:
            return self.formatter.format_api_response(
                "I can search for who performed an action, but I need to know what kind of action to look for. "
                "For example, 'who modified integrations' or 'who changed policies'."
            )

        prefix = self.catalog.prefix_for_phrase(str(event_type))
        if prefix is None:
            return self.formatter.format_api_response(
                f"I'm not sure how to search for events related to \"{event_type}\". "
                f"Try asking about integrations, policies, or users."
            )

        # The search endpoint cannot filter by prefix, so filter client-side
        all_events = await self.audit_service.get_all_events(days)
        matching = [event for event in all_events if event.event_type.startswith(prefix)]

        if not matching:
            return self.formatter.format_api_response(
                f"I didn't find any users who performed '{event_type}' actions in the last {days} days."
            )

        users: List[str] = []
        for event in matching:
            if event.actor != UNKNOWN_ACTOR and event.actor not in users:
                users.append(event.actor)

        message = f"Here are the users who performed '{event_type}' actions in the last {days} days:\n\n"
        message += ''.join(f"• {user}\n" for user in users)

        return self.formatter.format_api_response(message, data={'users': users, 'events': matching})

    async def _handle_security_events_query(self, entities: EntityMap, context: ConversationContext) -> ChatResponse:
        days = self._days(entities)
        try:
            events = await self.audit_service.get_security_events(days)
            categorized = self.security_analyzer.categorize(events)
            message = await self.security_analyzer.summarize(categorized, days)
        except Exception as e:
            self.logger.exception(f"Error handling security events query: {e}")
            return self.formatter.format_error(e, prefix="I encountered an error analyzing security events")

        return self.formatter.format_api_response(message, data=categorized)

    async def _handle_user_activity_query(self, entities: EntityMap, context: ConversationContext) -> ChatResponse:
        user_id = entities.get(EntityType.USER_ID.value)
        if user_id and str(user_id).lower() in USER_STOP_WORDS:
            user_id = None
        days = self._days(entities)

        self.logger.info(f"Fetching user activity for {user_id or 'all users'} over {days} days")
        try:
            if user_id and not _UUID_RE.match(str(user_id)):
                # A free-text name cannot be used as a server-side filter
                events = await self.audit_service.get_all_events(days)
            else:
                events = await self.audit_service.get_user_activity(user_id, days)

            activity = await self.user_analyzer.analyze(events, user_id)
            message = await self.user_analyzer.summarize(activity, user_id, days)
        except Exception as e:
            self.logger.exception(f"Error handling user activity query: {e}")
            return self.formatter.format_error(e, prefix="Error retrieving user activity")

        return self.formatter.format_api_response(message, data=activity)

    async def _handle_suspicious_activity_query(self, entities: EntityMap, context: ConversationContext) -> ChatResponse:
        days = self._days(entities, self.audit_config.suspicious_default_days)
        events = await self.audit_service.get_all_events(days)
        anomalies = self.anomaly_detector.detect(events)
        message = await self.anomaly_detector.summarize(anomalies, days)

        return self.formatter.format_api_response(message, data=[anomaly.to_dict() for anomaly in anomalies])

    async def _handle_time_based_query(self, entities: EntityMap, context: ConversationContext) -> ChatResponse:
        tz_name = self.audit_config.timezone
        now = self.clock().astimezone(get_zone(tz_name))
        start, end = parse_time_range(
            entities.get(EntityType.TIME_RANGE.value),
            now,
            (self.audit_config.business_hours_start, self.audit_config.business_hours_end)
        )

        events = await self.audit_service.get_events_by_time_range(start, end)
        summary = self.audit_service.summarize_time_range_events(events, start, end)

        message = f"Audit log summary for {format_datetime(start, tz_name)} - {format_datetime(end, tz_name)}:\n\n"
        message += f"Total events: {summary.total_events}\n"
        message += f"Active users: {summary.unique_user_count}\n\n"
        message += "Notable activities:\n"

        for event_type in summary.event_type_summary[:MAX_NOTABLE_TYPES]:
            message += f"• {event_type.count} {format_event_type(event_type.type)} events\n"

        if summary.security_events:
            message += f"\nSecurity-related events: {len(summary.security_events)}\n"
            for event in summary.security_events[:MAX_SECURITY_HIGHLIGHTS]:
                time = format_clock_time(event.created_at_utc, tz_name)
                message += f"• {format_event_type(event.event_type)} by {event.actor} at {time} ⚠️\n"

        return self.formatter.format_api_response(message, data=summary)

    async def _handle_help_request(self, entities: EntityMap, context: ConversationContext) -> ChatResponse:
        return self.formatter.format_api_response(HELP_MESSAGE)
