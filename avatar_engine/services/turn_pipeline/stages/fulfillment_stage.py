"""
Stage 7: Mark the turn's intent fulfilled.
"""

from typing import TYPE_CHECKING

from ..base import TurnStage
from avatar_engine.services.memory_service import MemoryService

if TYPE_CHECKING:
    from ..context import TurnContext


class FulfillmentStage(TurnStage):
    def __init__(self, memory: MemoryService):
        self.memory = memory

    async def process(self, context: "TurnContext") -> "TurnContext":
        definition = context.intent_definition
        context.memory = await self.memory.mark_intent_fulfilled(
            context.session_id,
            context.intent,
            repeatable=definition.repeatable if definition else True,
            max_age=definition.max_age if definition else None,
        )
        return context
