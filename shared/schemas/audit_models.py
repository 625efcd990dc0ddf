"""
Data models for the audit assistant.

This module defines the records that flow through the query pipeline:
normalized audit events, resolved user identities, NLP results, anomaly
records, user-activity summaries and the channel-neutral response object.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ConfigDict


UNKNOWN_ACTOR = "unknown"


class IntentType(str, Enum):
    """Closed set of intents, in recognition order."""
    EVENT_BY_USER_QUERY = "event_by_user_query"
    SECURITY_EVENTS_QUERY = "security_events_query"
    USER_ACTIVITY_QUERY = "user_activity_query"
    SUSPICIOUS_ACTIVITY_QUERY = "suspicious_activity_query"
    TIME_BASED_QUERY = "time_based_query"
    HELP_REQUEST = "help_request"


class EntityType(str, Enum):
    """Entity kinds produced by the entity extractor."""
    USER_ID = "user_id"
    TIME_PERIOD = "time_period"
    TIME_RANGE = "time_range"
    EVENT_TYPE = "event_type"
    COUNT_LIMIT = "count_limit"


# Entity kind (EntityType value) -> extracted value. Absent kinds are omitted.
EntityMap = Dict[str, Union[str, int]]


class ErrorCategory(str, Enum):
    """Classification of remote failures."""
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    UNKNOWN = "unknown"


class AnomalyType(str, Enum):
    HIGH_VOLUME_SENSITIVE_ACTIONS = "high_volume_sensitive_actions"
    AFTER_HOURS_ACTIVITY = "after_hours_activity"
    SERVICE_ACCOUNT_UNUSUAL_ACTIVITY = "service_account_unusual_activity"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AuditEvent(BaseModel):
    """
    Normalized audit record.

    Produced once by the fetch engine and never mutated afterwards.
    """
    model_config = ConfigDict(frozen=True, extra='ignore')

    created_at: Optional[datetime] = None
    event_type: str
    user_id: Optional[str] = None
    org_id: Optional[str] = None
    project_id: Optional[str] = None
    content: Dict[str, Any] = Field(default_factory=dict)

    @property
    def actor(self) -> str:
        """Best available actor identifier, or ``unknown``."""
        if self.user_id:
            return self.user_id
        for key in ('user_id', 'performed_by'):
            value = self.content.get(key)
            # content is free-form; only scalar ids are usable
            if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
                return str(value)
        return UNKNOWN_ACTOR

    @property
    def created_at_utc(self) -> Optional[datetime]:
        """Creation time as an aware UTC datetime."""
        if self.created_at is None:
            return None
        if self.created_at.tzinfo is None:
            return self.created_at.replace(tzinfo=timezone.utc)
        return self.created_at.astimezone(timezone.utc)


class UserInfo(BaseModel):
    """Resolved identity of an actor."""
    model_config = ConfigDict(extra='ignore')

    id: str
    name: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.name and self.email:
            return f"{self.name} ({self.email})"
        if self.name:
            return self.name
        if self.email:
            return self.email
        return f"user {self.id[:8]}"


@dataclass
class IntentResult:
    """Classified intent of one incoming message."""
    intent: IntentType
    confidence: float
    message: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            'intent': self.intent.value,
            'confidence': self.confidence,
            'message': self.message
        }


@dataclass
class AnomalyRecord:
    """One flagged suspicious activity."""
    type: AnomalyType
    user: str
    event_type: str
    severity: Severity
    description: str
    count: Optional[int] = None
    time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'user': self.user,
            'event_type': self.event_type,
            'severity': self.severity.value,
            'description': self.description,
            'count': self.count,
            'time': self.time.isoformat() if self.time else None
        }


@dataclass
class EventTypeCount:
    type: str
    count: int


@dataclass
class UserSummary:
    """Roster-view line for one actor."""
    user_id: str
    event_count: int
    last_active: Optional[datetime]
    event_types: List[EventTypeCount] = field(default_factory=list)


@dataclass
class UserActivitySummary:
    """
    Result of the user activity analyzer.

    Roster view fills ``user_summaries``; the detailed single-user view fills
    ``total_actions``, ``most_frequent_activities`` and ``recent_actions``.
    ``known_user`` is None for the roster view, True for a resolved user and
    False when a free-text name could not be resolved.
    """
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    known_user: Optional[bool] = None
    total_actions: int = 0
    most_frequent_activities: List[EventTypeCount] = field(default_factory=list)
    recent_actions: List[AuditEvent] = field(default_factory=list)
    all_events: List[AuditEvent] = field(default_factory=list)
    user_summaries: List[UserSummary] = field(default_factory=list)
    suggested_users: List[str] = field(default_factory=list)
    all_org_users: List[UserInfo] = field(default_factory=list)
    org_users_available: bool = True
    api_error_type: Optional[ErrorCategory] = None
    api_error_description: Optional[str] = None

    @property
    def is_roster_view(self) -> bool:
        return self.known_user is None


class NlpContext(BaseModel):
    """NLP results attached to the context of the current turn."""
    original_message: str = ""
    intent: Optional[IntentType] = None
    confidence: float = 0.0
    raw_entities: EntityMap = Field(default_factory=dict)


class ConversationContext(BaseModel):
    """
    Channel metadata owned by the calling adapter.

    Read-only to the pipeline; each turn gets a copy with ``nlp`` filled in.
    """
    model_config = ConfigDict(extra='allow')

    platform_user_id: Optional[str] = None
    channel_id: Optional[str] = None
    previous_intent: Optional[IntentType] = None
    previous_entities: EntityMap = Field(default_factory=dict)
    nlp: Optional[NlpContext] = None

    @property
    def conversation_key(self) -> Optional[str]:
        if not self.platform_user_id and not self.channel_id:
            return None
        return f"{self.channel_id or '-'}:{self.platform_user_id or '-'}"


class ChatResponse(BaseModel):
    """Channel-neutral response handed to delivery channels."""
    message: str
    data: Optional[Any] = None
    success: bool = True
    fallback: Optional[bool] = None
    clarification: Optional[bool] = None
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            'message': self.message,
            'data': self.data,
            'success': self.success,
            'timestamp': self.timestamp
        }
        if self.fallback is not None:
            payload['fallback'] = self.fallback
        if self.clarification is not None:
            payload['clarification'] = self.clarification
        return payload
