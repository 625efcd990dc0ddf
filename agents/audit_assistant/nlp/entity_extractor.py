"""
Entity Extraction for Audit Log Questions

Pulls structured query parameters out of free text with ordered pattern
lists, one list per entity kind. Within a kind the first matching pattern
wins; kinds that do not match are left out of the result.

Entity kinds:
- user_id: a user reference (``@name``, ``user name``, possessives, ...)
- time_period: a look-back such as ``3 weeks``, ``last month``, ``today``
- time_range: a named or explicit window (``last night``, ``weekend``, ...)
- event_type: an action phrase such as ``policy`` or ``modified integrations``
- count_limit: a result limit such as ``top 5``
"""

import re
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple

from shared.config.logging_config import get_component_logger
from shared.schemas.audit_models import EntityMap, EntityType


_TIME_UNITS = r'(days?|hours?|weeks?|months?|years?)'
_EVENT_VERBS = r'(modified|changed|created|deleted|edited|added|removed|updated)'
_EVENT_OBJECTS = (
    r'(integrations?|polic(?:y|ies)|webhooks?|service accounts?|projects?|users?|roles?'
    r'|sast settings|targets?|apps?|collections?)'
)
_MONTHS = r'(january|february|march|april|may|june|july|august|september|october|november|december)'

ENTITY_PATTERNS: Dict[EntityType, List[str]] = {
    EntityType.USER_ID: [
        r'@([\w.-]+)',
        r'(?i)user ([\w.-]+)',
        r'(?i)what (has|did) ([\w.-]+)',
        r'(?i)what ([\w.-]+) (?:has been doing|has done|did)',
        r"(?i)([\w.-]+)'s activity",
        r'(?i)activity (by|for|of) ([\w.-]+)',
        r'(?i)actions (by|from) ([\w.-]+)'
    ],

    EntityType.TIME_PERIOD: [
        rf'(?i)last (\d+) {_TIME_UNITS}',
        rf'(?i)past (\d+) {_TIME_UNITS}',
        rf'(?i)(\d+) {_TIME_UNITS} ago',
        r'(?i)last (day|week|month|year|hour)',
        r'(?i)yesterday',
        r'(?i)today',
        r'(?i)this (week|month|year)',
        r'(?i)recent(ly)?',
        r'(?i)since (yesterday|last week|last month)'
    ],

    EntityType.TIME_RANGE: [
        r'(?i)last night',
        r'(?i)overnight',
        r'(?i)weekend',
        r'(?i)after[- ]hours',
        r'(?i)between (.*) and (.*)',
        r'(?i)from (.*) to (.*)',
        r'(?i)during (morning|afternoon|evening|night)',
        r'(?i)during (.*)'
    ],

    EntityType.EVENT_TYPE: [
        r'(?i)policy changes',
        r'(?i)policy (create|edit|delete)',
        r'(?i)integration changes',
        r'(?i)integration (create|edit|delete)',
        r'(?i)webhook changes',
        r'(?i)service account changes',
        r'(?i)project changes',
        r'(?i)user (add|remove|invite)',
        r'(?i)role changes',
        rf'(?i){_EVENT_VERBS} (?:the |our |any )?{_EVENT_OBJECTS}'
    ],

    EntityType.COUNT_LIMIT: [
        r'(?i)top (\d+)',
        r'(?i)first (\d+)',
        # "last 3 weeks" is a time period, not a limit
        rf'(?i)last (\d+)\b(?!\s*{_TIME_UNITS}\b)',
        r'(?i)(\d+) most',
        r'(?i)limit (\d+)',
        r'(?i)(\d+) results'
    ]
}

# Compound date expressions, tried only when no period or range was found
SECONDARY_TIME_PATTERNS: List[Tuple[str, EntityType]] = [
    (r'(?i)since (last|this) (monday|tuesday|wednesday|thursday|friday|saturday|sunday)', EntityType.TIME_PERIOD),
    (rf'(?i){_MONTHS} (\d{{1,2}})(st|nd|rd|th)?', EntityType.TIME_RANGE),
    (rf'(?i)(\d{{1,2}})(st|nd|rd|th)? of {_MONTHS}', EntityType.TIME_RANGE),
    (r'(?i)from .* until .*', EntityType.TIME_RANGE),
    (r'(?i)last quarter', EntityType.TIME_PERIOD),
    (r'(?i)Q[1-4]', EntityType.TIME_RANGE),
    (r'(?i)first half of (the )?(day|week|month|year)', EntityType.TIME_RANGE),
    (r'(?i)second half of (the )?(day|week|month|year)', EntityType.TIME_RANGE)
]


def _last_group(match: re.Match) -> Optional[str]:
    groups = match.groups()
    return groups[-1] if groups else match.group(0)


def _process_time_period(match: re.Match) -> str:
    """Normalize a time-period match to ``N unit``, ``last unit`` or a literal."""
    text = match.group(0).lower()
    first = match.group(1) if match.groups() else None

    if first and first.isdigit():
        unit = match.group(2) if len(match.groups()) > 1 and match.group(2) else 'days'
        return f"{first} {unit.lower()}"

    if 'last' in text:
        unit = first or (text.split(' ')[1] if ' ' in text else 'day')
        return f"last {unit.lower()}"

    if 'yesterday' in text:
        return 'yesterday'

    if 'today' in text:
        return 'today'

    if 'this' in text:
        return f"this {text.split(' ')[1]}"

    if 'recent' in text:
        return 'recent'

    return match.group(0)


def _process_event_type(match: re.Match) -> str:
    return re.sub(r'changes', '', match.group(0).lower(), count=1).strip()


def _process_count_limit(match: re.Match) -> Optional[int]:
    try:
        return int(match.group(1))
    except (TypeError, ValueError):
        return None


_VALUE_EXTRACTORS: Dict[EntityType, Callable[[re.Match], Any]] = {
    EntityType.USER_ID: _last_group,
    EntityType.TIME_PERIOD: _process_time_period,
    EntityType.TIME_RANGE: lambda match: match.group(0),
    EntityType.EVENT_TYPE: _process_event_type,
    EntityType.COUNT_LIMIT: _process_count_limit
}


class EntityExtractor:
    """Pure, deterministic entity extraction over ordered pattern tables."""

    def __init__(
        self,
        patterns: Optional[Dict[EntityType, List[str]]] = None,
        secondary_patterns: Optional[List[Tuple[str, EntityType]]] = None,
        logger=None
    ):
        self.logger = logger or get_component_logger("nlp.entity_extractor")

        self.entity_patterns: Dict[EntityType, List[Pattern[str]]] = {
            entity_type: [re.compile(p) for p in entity_patterns]
            for entity_type, entity_patterns in (patterns or ENTITY_PATTERNS).items()
        }
        self.secondary_patterns: List[Tuple[Pattern[str], EntityType]] = [
            (re.compile(p), entity_type)
            for p, entity_type in (secondary_patterns or SECONDARY_TIME_PATTERNS)
        ]

    def extract(self, message: Any) -> EntityMap:
        """
        Extract entities from a message.

        Returns:
            Mapping of entity kind value to extracted value; kinds that did
            not match are absent
        """
        if not isinstance(message, str) or not message:
            return {}

        entities: EntityMap = {}

        for entity_type, patterns in self.entity_patterns.items():
            value = self._extract_with_patterns(message, patterns, entity_type)
            if value is not None and value != '':
                entities[entity_type.value] = value

        if EntityType.TIME_PERIOD.value not in entities and EntityType.TIME_RANGE.value not in entities:
            time_entity = self._extract_time_entity(message)
            if time_entity:
                entity_type, value = time_entity
                entities[entity_type.value] = value

        if entities:
            self.logger.debug("Entities extracted", extra={"entities": dict(entities)})

        return entities

    def _extract_with_patterns(
        self,
        message: str,
        patterns: List[Pattern[str]],
        entity_type: EntityType
    ) -> Optional[Any]:
        for pattern in patterns:
            match = pattern.search(message)
            if match:
                return _VALUE_EXTRACTORS[entity_type](match)
        return None

    def _extract_time_entity(self, message: str) -> Optional[Tuple[EntityType, str]]:
        for pattern, entity_type in self.secondary_patterns:
            match = pattern.search(message)
            if match:
                return entity_type, match.group(0)
        return None
