"""
Stage 3: Gate the intent and push it onto the session stack.
"""

from typing import TYPE_CHECKING

import structlog

from ..base import TurnStage
from avatar_engine.services.intent_classifier import IntentClassifier
from avatar_engine.services.memory_service import MemoryService

log = structlog.get_logger(__name__)

if TYPE_CHECKING:
    from ..context import TurnContext


class MemoryUpdateStage(TurnStage):
    """
    Apply fulfillment gating, then record the intent.

    An intent that may not fire again (non-repeatable and fulfilled, or
    inside its max_age cooldown) is downgraded to the general intent.
    """

    def __init__(self, memory: MemoryService, classifier: IntentClassifier):
        self.memory = memory
        self.classifier = classifier

    async def process(self, context: "TurnContext") -> "TurnContext":
        session_id = context.session_id
        classification = context.classification

        if not await self.memory.can_execute_intent(session_id, classification.intent):
            general = self.classifier.general_intent
            log.info(
                "intent_downgraded",
                session_id=session_id,
                intent=classification.intent,
                fallback=general,
            )
            classification = classification.model_copy(
                update={"intent": general, "requires_flow": False, "flow_name": None}
            )
            context.classification = classification
            context.intent_downgraded = True

        definition = self.classifier.get_intent_definition(
            context.avatar, classification.intent
        )
        context.intent_definition = definition

        context.memory = await self.memory.push_intent(
            session_id,
            classification.intent,
            classification.confidence,
            metadata={
                "user_message": context.user_message,
                "source": classification.source,
                "entities": dict(classification.entities),
            },
            repeatable=definition.repeatable if definition else True,
            max_age=definition.max_age if definition else None,
        )
        return context
