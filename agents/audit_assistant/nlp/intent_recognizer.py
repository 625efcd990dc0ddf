"""
Intent Recognition for Audit Log Questions

This module classifies free-text questions about the audit log into one of a
fixed set of intents.

Classification is two-pass:
- Pattern pass: intents are tried in declaration order and each intent's
  patterns in order; the first pattern that matches wins immediately.
- Keyword pass: only reached when no pattern matched. Every intent is scored
  by keyword hits plus a coverage bonus, and the best score wins if it
  reaches the low-confidence threshold. Otherwise the question is treated
  as a help request.

Intent Types:
- event_by_user_query: who performed a kind of action
- security_events_query: recent security-relevant changes
- user_activity_query: what a user (or all users) did
- suspicious_activity_query: anomaly detection
- time_based_query: what happened in a time window
- help_request: capabilities and examples
"""

import re
from typing import Any, Dict, List, Optional, Pattern, Tuple

from shared.config.logging_config import get_component_logger
from shared.schemas.audit_models import IntentResult, IntentType
from shared.utils.metrics import get_metrics_collector, track_performance


LOW_CONFIDENCE_THRESHOLD = 0.3

# Pattern-pass confidence heuristics
BASE_PATTERN_CONFIDENCE = 0.85
GROUP_BONUS = 0.03
OPTIONAL_PENALTY = 0.02
EXACT_PHRASE_BONUS = 0.1
MAX_PATTERN_CONFIDENCE = 0.99

# Keyword-pass scoring
KEYWORD_HIT_SCORE = 0.2
PHRASE_KEYWORD_BONUS = 0.1
MAX_COVERAGE_BONUS = 0.3
MAX_KEYWORD_CONFIDENCE = 0.95

_ACTION_VERBS = r'(modified|changed|created|deleted|edited|added|removed|updated)'

INTENT_PATTERNS: Dict[IntentType, List[str]] = {
    IntentType.EVENT_BY_USER_QUERY: [
        rf'who (has |have )?{_ACTION_VERBS}',
        rf'which users? (has |have )?{_ACTION_VERBS}',
        r'who (made|performed) (\w+ )?(changes|actions)',
        r'who (is|was) responsible for'
    ],

    IntentType.SECURITY_EVENTS_QUERY: [
        r'security (events|incidents)',
        r'recent (\w+ )?security',
        r'show me security',
        r'(any|recent) (security )?(issues|events|incidents)',
        r'security (concerns|problems)',
        r'policy changes',
        r'integration (changes|updates)',
        r'webhook (changes|updates)',
        r'service account changes'
    ],

    IntentType.USER_ACTIVITY_QUERY: [
        r'user activity',
        r'what (has|did) (\w+) (do|done)',
        r'show me what (\w+) (did|has done)',
        r"(\w+)'s activity",
        r'user actions',
        r'who (has been active|did what)',
        r'activity by (\w+)',
        r'user behavior',
        r'actions (by|from) (\w+)',
        r'what has (\w+) been doing'
    ],

    IntentType.SUSPICIOUS_ACTIVITY_QUERY: [
        r'suspicious activity',
        r'unusual (behavior|activity)',
        r'detect anomalies',
        r'any suspicious',
        r'strange patterns',
        r'security anomalies',
        r'after[- ]hours activity',
        r'unexpected changes',
        r'potential security (issues|breaches)',
        r'anomalous behavior'
    ],

    IntentType.TIME_BASED_QUERY: [
        r'what happened (last night|yesterday|over the weekend)',
        r'show me (activity|events|logs) (from|during|in) (.*)',
        r'(last night|weekend|after[- ]hours) activity',
        r'activity (between|from|during)',
        r'logs from (.*)',
        r'events in the last (.*)',
        r'(morning|afternoon|evening|night) activity'
    ],

    IntentType.HELP_REQUEST: [
        r'help',
        r'what can you (do|tell me)',
        r'how (do|can) i use',
        r'what (questions|commands)',
        r'available commands',
        r'show options',
        r'commands',
        r'capabilities',
        r'examples',
        r'how does this work'
    ]
}

INTENT_KEYWORDS: Dict[IntentType, List[str]] = {
    IntentType.SECURITY_EVENTS_QUERY: [
        'security', 'policy', 'policies', 'event', 'events', 'incident',
        'incidents', 'issue', 'issues', 'changes', 'integration', 'webhook'
    ],
    IntentType.USER_ACTIVITY_QUERY: [
        'user', 'activity', 'actions', 'behavior', 'did', 'done', 'doing',
        'who', 'perform', 'performed'
    ],
    IntentType.SUSPICIOUS_ACTIVITY_QUERY: [
        'suspicious', 'unusual', 'anomaly', 'anomalies', 'strange', 'unexpected',
        'weird', 'odd', 'abnormal', 'detection', 'after hours'
    ],
    IntentType.TIME_BASED_QUERY: [
        'when', 'time', 'yesterday', 'today', 'last night', 'weekend', 'morning',
        'afternoon', 'evening', 'night', 'hour', 'day', 'week', 'month'
    ],
    IntentType.HELP_REQUEST: [
        'help', 'assist', 'how', 'what', 'guide', 'explain', 'show me',
        'instructions', 'commands', 'options'
    ]
}

_GROUP_RE = re.compile(r'\([^?]')


class IntentRecognizer:
    """
    Rule-based intent recognizer.

    Stateless after construction; safe to share between concurrent requests.
    """

    def __init__(
        self,
        patterns: Optional[Dict[IntentType, List[str]]] = None,
        keywords: Optional[Dict[IntentType, List[str]]] = None,
        low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD,
        logger=None
    ):
        self.logger = logger or get_component_logger("nlp.intent_recognizer")
        self.metrics = get_metrics_collector()
        self.low_confidence_threshold = low_confidence_threshold

        # Insertion order is the recognition order
        self.intent_patterns: List[Tuple[IntentType, List[Pattern[str]]]] = [
            (intent, [re.compile(p, re.IGNORECASE) for p in intent_patterns])
            for intent, intent_patterns in (patterns or INTENT_PATTERNS).items()
        ]
        self.intent_keywords = keywords or INTENT_KEYWORDS

        self.fallback_counter = self.metrics.counter("intent_keyword_fallback_total")

    @track_performance("nlp.recognize_intent")
    def recognize(self, message: Any) -> IntentResult:
        """
        Classify a message.

        Args:
            message: Raw user text; anything that is not a non-empty string
                is treated as a help request

        Returns:
            IntentResult carrying the original message
        """
        if not isinstance(message, str) or not message.strip():
            return IntentResult(
                intent=IntentType.HELP_REQUEST,
                confidence=1.0,
                message='Empty or invalid message'
            )

        normalized = message.strip().lower()

        for intent, patterns in self.intent_patterns:
            for pattern in patterns:
                if pattern.search(normalized):
                    confidence = self._calculate_confidence(normalized, pattern)
                    self.logger.debug(
                        f"Pattern match for {intent.value}",
                        extra={"pattern": pattern.pattern, "confidence": confidence}
                    )
                    return IntentResult(intent=intent, confidence=confidence, message=message)

        self.fallback_counter.increment()
        scored = self._score_intents_by_keywords(normalized)
        # Stable sort keeps declaration order on ties
        scored.sort(key=lambda item: item[1], reverse=True)

        if scored and scored[0][1] >= self.low_confidence_threshold:
            intent, score = scored[0]
            self.logger.debug(f"Keyword match for {intent.value}", extra={"confidence": score})
            return IntentResult(intent=intent, confidence=score, message=message)

        return IntentResult(intent=IntentType.HELP_REQUEST, confidence=1.0, message=message)

    def _calculate_confidence(self, message: str, pattern: Pattern[str]) -> float:
        """Specificity heuristic for a pattern match."""
        source = pattern.pattern
        group_count = len(_GROUP_RE.findall(source))
        optional_count = source.count('?')

        confidence = BASE_PATTERN_CONFIDENCE
        confidence += group_count * GROUP_BONUS
        confidence -= optional_count * OPTIONAL_PENALTY

        # Crude proxy for "the whole message is the pattern"
        if message in source:
            confidence += EXACT_PHRASE_BONUS

        return min(confidence, MAX_PATTERN_CONFIDENCE)

    def _score_intents_by_keywords(self, message: str) -> List[Tuple[IntentType, float]]:
        scores = []
        word_count = len(message.split())

        for intent, keywords in self.intent_keywords.items():
            score = 0.0
            match_count = 0

            for keyword in keywords:
                # Substring hits count, so "events" also hits "event"
                if keyword in message:
                    score += KEYWORD_HIT_SCORE
                    match_count += 1
                    if ' ' in keyword:
                        score += PHRASE_KEYWORD_BONUS

            if match_count:
                coverage_bonus = min(MAX_COVERAGE_BONUS, match_count / word_count * 0.5)
                scores.append((intent, min(score + coverage_bonus, MAX_KEYWORD_CONFIDENCE)))

        return scores
