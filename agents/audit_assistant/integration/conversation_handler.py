"""
Conversation Handler for the Audit Assistant

Entry point used by every delivery channel: ``process_message(text, context)``
runs intent recognition and entity extraction, applies low-confidence
handling and hands the result to the request router. The last NLP result
of each conversation is remembered so follow-up turns can see it as
``previous_intent``/``previous_entities``.
"""

import random
import re
from typing import Any, Dict, Mapping, Optional, Union

from shared.config.logging_config import get_component_logger
from shared.config.settings import CacheSettings, NlpConfig
from shared.schemas.audit_models import ChatResponse, ConversationContext, IntentType, NlpContext
from shared.utils.caching import MemoryCache
from shared.utils.metrics import get_metrics_collector, track_performance
from shared.utils.time_utils import Clock, utc_now

from ..nlp.entity_extractor import EntityExtractor
from ..nlp.intent_recognizer import IntentRecognizer
from .request_router import RequestRouter
from .response_formatter import ResponseFormatter


QUESTION_WORDS = ('what', 'how', 'when', 'who', 'why', 'where', 'which', 'show', 'tell', 'find')

CLARIFICATION_PREFIX = "I'm not entirely sure, but here's what I found:\n\n"

FALLBACK_RESPONSES = [
    "I'm not sure I understand. Could you rephrase your question about Snyk audit logs?",
    "I'm having trouble understanding that. Try asking about security events, user activity, or suspicious behavior.",
    "I didn't quite catch that. You can ask me things like 'Show me recent security events' or "
    "'Any suspicious activity lately?'",
    "I'm not sure how to help with that. You can ask about security events, user activity, "
    "or type 'help' for more options."
]

_QUESTION_RE = re.compile(r'\b(' + '|'.join(QUESTION_WORDS) + r')\b', re.IGNORECASE)


class ConversationHandler:
    """
    Turns free-text messages into channel-neutral responses.

    Safe to share between concurrent requests: the only mutable state is
    the per-conversation context cache, bounded by size and TTL, where
    same-key races are last-write-wins.
    """

    def __init__(
        self,
        router: RequestRouter,
        intent_recognizer: Optional[IntentRecognizer] = None,
        entity_extractor: Optional[EntityExtractor] = None,
        nlp_config: Optional[NlpConfig] = None,
        formatter: Optional[ResponseFormatter] = None,
        rng: Optional[random.Random] = None,
        cache_settings: Optional[CacheSettings] = None,
        clock: Clock = utc_now,
        logger=None
    ):
        self.logger = logger or get_component_logger("integration.conversation_handler")
        self.router = router
        self.nlp_config = nlp_config or NlpConfig()
        self.intent_recognizer = intent_recognizer or IntentRecognizer(
            low_confidence_threshold=self.nlp_config.confidence_threshold,
            logger=self.logger.child("intent")
        )
        self.entity_extractor = entity_extractor or EntityExtractor(logger=self.logger.child("entities"))
        self.formatter = formatter or router.formatter
        self.rng = rng or random.Random()
        self.metrics = get_metrics_collector()

        cache_settings = cache_settings or CacheSettings()
        self.conversations = MemoryCache(
            max_size=cache_settings.conversation_cache_size,
            default_ttl=cache_settings.conversation_ttl_seconds,
            clock=clock
        )

        self.logger.info("Conversation handler initialized", extra={"initialized": self.is_initialized})

    @property
    def is_initialized(self) -> bool:
        return self.router.is_initialized

    @track_performance("conversation.process_message")
    async def process_message(
        self,
        text: Any,
        context: Union[ConversationContext, Mapping[str, Any], None] = None
    ) -> ChatResponse:
        """
        Answer one message.

        Never raises: any failure becomes an unsuccessful response.
        """
        self.metrics.counter("conversation.messages_total").increment()
        try:
            return await self._process(text, context)
        except Exception as e:
            self.logger.exception(f"Error processing message: {e}")
            self.metrics.counter("conversation.errors_total").increment()
            return self.formatter.format_error(e, prefix="Sorry, I encountered an error")

    async def _process(
        self,
        text: Any,
        context: Union[ConversationContext, Mapping[str, Any], None]
    ) -> ChatResponse:
        context = self._coerce_context(context)

        intent_result = self.intent_recognizer.recognize(text)
        entities = self.entity_extractor.extract(text)

        nlp = NlpContext(
            original_message=text if isinstance(text, str) else '',
            intent=intent_result.intent,
            confidence=intent_result.confidence,
            raw_entities=entities
        )
        turn_context = (await self._with_history(context)).model_copy(update={'nlp': nlp})

        self.logger.info(
            f"Recognized intent {intent_result.intent.value}",
            extra={"confidence": intent_result.confidence, "entities": dict(entities)}
        )

        if intent_result.confidence < self.nlp_config.confidence_threshold:
            response = await self._handle_low_confidence(intent_result.intent, intent_result.confidence,
                                                         nlp.original_message, entities, turn_context)
        else:
            response = await self.router.handle_request(intent_result.intent, entities, turn_context)

        key = context.conversation_key
        if key is not None:
            await self.conversations.set(key, nlp)

        return response

    async def _handle_low_confidence(
        self,
        intent: IntentType,
        confidence: float,
        message: str,
        entities: Dict[str, Any],
        context: ConversationContext
    ) -> ChatResponse:
        if _QUESTION_RE.search(message) and confidence >= self.nlp_config.clarification_floor:
            response = await self.router.handle_request(intent, entities, context)
            return response.model_copy(update={
                'message': CLARIFICATION_PREFIX + response.message,
                'clarification': True
            })

        self.metrics.counter("conversation.fallback_total").increment()
        return self.formatter.format_api_response(self.rng.choice(FALLBACK_RESPONSES), fallback=True)

    @staticmethod
    def _coerce_context(context: Union[ConversationContext, Mapping[str, Any], None]) -> ConversationContext:
        if context is None:
            return ConversationContext()
        if isinstance(context, ConversationContext):
            return context
        return ConversationContext.model_validate(dict(context))

    async def _with_history(self, context: ConversationContext) -> ConversationContext:
        key = context.conversation_key
        previous = await self.conversations.get(key) if key is not None else None
        if previous is None or context.previous_intent is not None:
            return context
        return context.model_copy(update={
            'previous_intent': previous.intent,
            'previous_entities': dict(previous.raw_entities)
        })

    async def get_conversation(self, key: str) -> Optional[NlpContext]:
        return await self.conversations.get(key)

    async def clear_conversations(self) -> None:
        await self.conversations.clear()
