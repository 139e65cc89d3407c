"""
Intent classification service.

Turns a raw user message into one named intent from the avatar's active
definition set:

1. LLM classification (when a classification client is configured): one
   short, low-temperature call that must answer with an intent name.
   Names outside the definition set are replaced by the comment intent
   at reduced confidence.
2. Keyword fallback (no client, or the call failed): first definition, in
   set order, with a keyword contained in the message wins at 0.9;
   otherwise the general intent at 0.3.

Classification failures never reach the caller.
"""

from typing import List, Optional, Tuple

import httpx
import structlog

from avatar_engine.core.clock import Clock, utc_now
from avatar_engine.core.config import settings
from avatar_engine.core.definition_loader import DefinitionCatalog
from avatar_engine.core.exceptions import LLMError, LLMResponseParseError
from avatar_engine.domain.models.avatar import AvatarSelector
from avatar_engine.domain.models.definitions import IntentDefinition
from avatar_engine.domain.models.intent import IntentClassificationResult
from avatar_engine.domain.models.memory import MindStateStack
from avatar_engine.llm.client import LLMClient
from avatar_engine.llm.prompts.classification import (
    get_classification_system_prompt,
    get_classification_user_prompt,
    parse_intent_name,
)
from avatar_engine.services.memory_service import is_continuation

log = structlog.get_logger(__name__)

MATCH_CONFIDENCE = 0.9
DEFAULT_CONFIDENCE = 0.3
CONTEXT_INTENTS = 3


class IntentClassifier:
    """Classifies user messages into intents."""

    def __init__(
        self,
        catalog: DefinitionCatalog,
        llm_client: Optional[LLMClient] = None,
        clock: Clock = utc_now,
        general_intent: Optional[str] = None,
        comment_intent: Optional[str] = None,
        continuation_window_seconds: Optional[float] = None,
    ):
        """
        Args:
            catalog: Definition catalog resolving avatars to intent sets
            llm_client: Classification client; None selects keyword matching only
            clock: Time source for the continuation check
            general_intent: Intent used when nothing matches
            comment_intent: Intent substituted for names the LLM invents
            continuation_window_seconds: Same-intent window for continuation
        """
        self.catalog = catalog
        self.llm_client = llm_client
        self.clock = clock
        self.general_intent = general_intent or settings.general_intent
        self.comment_intent = comment_intent or settings.comment_intent
        self.continuation_window_seconds = (
            continuation_window_seconds
            if continuation_window_seconds is not None
            else settings.continuation_window_seconds
        )

    # ------------------------------------------------------------------
    # Definition helpers
    # ------------------------------------------------------------------

    def get_intent_definition(
        self, avatar: AvatarSelector, intent: str
    ) -> Optional[IntentDefinition]:
        return self.catalog.resolve(avatar).get_intent(intent)

    def requires_flow(self, avatar: AvatarSelector, intent: str) -> bool:
        definition = self.get_intent_definition(avatar, intent)
        return bool(definition and definition.requires_flow)

    def get_flow_name(self, avatar: AvatarSelector, intent: str) -> Optional[str]:
        definition = self.get_intent_definition(avatar, intent)
        return definition.flow_name if definition else None

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    async def classify(
        self,
        user_message: str,
        avatar: AvatarSelector,
        memory: Optional[MindStateStack] = None,
    ) -> IntentClassificationResult:
        """
        Classify ``user_message`` for ``avatar``.

        Args:
            user_message: Non-empty user message (validated by the caller)
            avatar: Avatar whose intent set applies
            memory: Session memory for conversational context and continuation

        Returns:
            IntentClassificationResult
        """
        definitions = self.catalog.resolve(avatar).intents

        intent, confidence, source = None, DEFAULT_CONFIDENCE, "keyword"
        if self.llm_client is not None:
            try:
                intent, confidence, source = await self._classify_with_llm(
                    user_message, definitions, memory
                )
            except Exception as e:
                # Any classification failure degrades to keyword matching
                log.warning(
                    "llm_classification_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    fallback="keyword",
                    exc_info=not isinstance(e, (LLMError, httpx.HTTPError)),
                )

        if intent is None:
            intent, confidence, source = self._match_keywords(user_message, definitions)

        definition = next((d for d in definitions if d.name == intent), None)
        if definition is not None and confidence < definition.confidence_threshold:
            log.info(
                "intent_below_threshold",
                intent=intent,
                confidence=confidence,
                threshold=definition.confidence_threshold,
            )
            intent, confidence, source = self.general_intent, DEFAULT_CONFIDENCE, "default"
            definition = next((d for d in definitions if d.name == intent), None)

        continuation = bool(
            memory
            and is_continuation(
                memory, intent, self.clock(), self.continuation_window_seconds
            )
        )

        result = IntentClassificationResult(
            intent=intent,
            confidence=confidence,
            requires_flow=bool(definition and definition.requires_flow),
            flow_name=definition.flow_name if definition else None,
            is_continuation=continuation,
            source=source,
        )
        log.info(
            "intent_classified",
            intent=result.intent,
            confidence=result.confidence,
            source=result.source,
            is_continuation=result.is_continuation,
            requires_flow=result.requires_flow,
        )
        return result

    async def _classify_with_llm(
        self,
        user_message: str,
        definitions: List[IntentDefinition],
        memory: Optional[MindStateStack],
    ) -> Tuple[str, float, str]:
        recent = memory.recent_intents(CONTEXT_INTENTS) if memory else []
        response = await self.llm_client.complete(
            prompt=get_classification_user_prompt(user_message, recent),
            system=get_classification_system_prompt(definitions),
            temperature=0.1,
            max_tokens=20,
        )

        name = parse_intent_name(response.content)
        if not name:
            raise LLMResponseParseError("Empty intent name from classification call")

        if any(d.name == name for d in definitions):
            return name, MATCH_CONFIDENCE, "llm"

        log.warning(
            "unknown_intent_from_llm",
            returned=name,
            substituted=self.comment_intent,
        )
        return self.comment_intent, DEFAULT_CONFIDENCE, "default"

    def _match_keywords(
        self, user_message: str, definitions: List[IntentDefinition]
    ) -> Tuple[str, float, str]:
        """First definition whose keyword occurs in the message wins."""
        message = user_message.lower()
        for definition in definitions:
            for keyword in definition.keywords:
                if keyword and keyword.lower() in message:
                    log.debug(
                        "keyword_match", intent=definition.name, keyword=keyword
                    )
                    return definition.name, MATCH_CONFIDENCE, "keyword"
        return self.general_intent, DEFAULT_CONFIDENCE, "default"
