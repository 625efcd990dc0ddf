"""
Audit event-type catalog.

One shared, injectable table of the statically enumerated event types the
analyzers reason about: which types are security-critical, how they are
prioritised, which ones describe user administration, and which keyword
phrases map to which event-type prefix. Analyzers and the service layer
receive an ``EventCatalog`` instead of carrying their own copies.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict


class EventPriority(str, Enum):
    """Priority tiers used by the security event summary."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SECURITY_CRITICAL_EVENTS: List[str] = [
    'org.policy.create', 'org.policy.edit', 'org.policy.delete',
    'org.ignore_policy.edit',
    'org.integration.create', 'org.integration.delete', 'org.integration.edit',
    'org.service_account.create', 'org.service_account.delete', 'org.service_account.edit',
    'org.settings.feature_flag.edit',
    'org.project.ignore.create', 'org.project.ignore.delete', 'org.project.ignore.edit',
    'org.sast_settings.edit',
    'org.webhook.add', 'org.webhook.delete'
]

HIGH_PRIORITY_EVENTS: List[str] = [
    'org.policy.create', 'org.policy.delete',
    'org.service_account.create',
    'org.webhook.add'
]

MEDIUM_PRIORITY_EVENTS: List[str] = [
    'org.policy.edit',
    'org.integration.create', 'org.integration.edit',
    'org.settings.feature_flag.edit',
    'org.project.ignore.create'
]

USER_ACTIVITY_EVENTS: List[str] = [
    'org.user.add', 'org.user.remove',
    'org.user.role.edit', 'org.user.role.create', 'org.user.role.delete',
    'org.user.invite', 'org.user.invite.accept', 'org.user.invite.revoke',
    'org.user.leave',
    'api.access'
]

# Checked in order; the first keyword contained in the phrase wins
ACTION_PREFIXES: Dict[str, str] = {
    'service account': 'org.service_account.',
    'sast settings': 'org.sast_settings.',
    'integration': 'org.integration.',
    'policy': 'org.policy.',
    'policies': 'org.policy.',
    'webhook': 'org.webhook.',
    'user': 'org.user.role.',
    'role': 'org.user.role.',
    'project': 'org.project.',
    'target': 'org.target.',
    'app': 'org.app.',
    'collection': 'org.collection.'
}


class EventCatalog(BaseModel):
    """Event-type tables consumed by the fetch layer and the analyzers."""
    model_config = ConfigDict(frozen=True, extra='forbid')

    security_critical: List[str] = Field(default_factory=lambda: list(SECURITY_CRITICAL_EVENTS))
    high_priority: List[str] = Field(default_factory=lambda: list(HIGH_PRIORITY_EVENTS))
    medium_priority: List[str] = Field(default_factory=lambda: list(MEDIUM_PRIORITY_EVENTS))
    user_activity: List[str] = Field(default_factory=lambda: list(USER_ACTIVITY_EVENTS))
    action_prefixes: Dict[str, str] = Field(default_factory=lambda: dict(ACTION_PREFIXES))

    # Service-account heuristics for the anomaly detector
    service_account_markers: List[str] = Field(
        default_factory=lambda: ['service', 'bot', 'auto', 'jenkins']
    )
    routine_ci_prefixes: List[str] = Field(default_factory=lambda: ['org.project.test'])

    # Settings-change event whose before/after content gets a detailed diff
    settings_change_event: str = Field(default='org.sast_settings.edit')

    def is_security_critical(self, event_type: Optional[str]) -> bool:
        return event_type in self.security_critical

    def priority_of(self, event_type: Optional[str]) -> EventPriority:
        """Exact-match priority lookup; unlisted types are low priority."""
        if event_type in self.high_priority:
            return EventPriority.HIGH
        if event_type in self.medium_priority:
            return EventPriority.MEDIUM
        return EventPriority.LOW

    def prefix_for_phrase(self, phrase: Optional[str]) -> Optional[str]:
        """
        Fuzzy-match an event phrase to an event-type prefix.

        Returns the prefix for the first keyword that is a substring of
        the phrase, or None.
        """
        if not phrase:
            return None

        lowered = phrase.lower()
        for keyword, prefix in self.action_prefixes.items():
            if keyword in lowered:
                return prefix
        return None

    def looks_like_service_account(self, actor: Optional[str]) -> bool:
        if not actor:
            return False
        lowered = actor.lower()
        return any(marker in lowered for marker in self.service_account_markers)

    def is_routine_ci_event(self, event_type: Optional[str]) -> bool:
        if not event_type:
            return False
        return any(event_type.startswith(prefix) for prefix in self.routine_ci_prefixes)


DEFAULT_EVENT_CATALOG = EventCatalog()
