"""
Stage 1: Load session memory and classify the message.
"""

from typing import TYPE_CHECKING

import structlog

from ..base import TurnStage
from avatar_engine.services.intent_classifier import IntentClassifier
from avatar_engine.services.memory_service import MemoryService

log = structlog.get_logger(__name__)

if TYPE_CHECKING:
    from ..context import TurnContext


class ClassificationStage(TurnStage):
    """
    Classify the user message against the avatar's intent set.

    Populates TurnContext with:
    - memory (loaded or freshly created)
    - classification
    """

    def __init__(self, memory: MemoryService, classifier: IntentClassifier):
        self.memory = memory
        self.classifier = classifier

    async def process(self, context: "TurnContext") -> "TurnContext":
        context.memory = await self.memory.get(context.session_id)
        context.classification = await self.classifier.classify(
            context.user_message, context.avatar, context.memory
        )
        return context
