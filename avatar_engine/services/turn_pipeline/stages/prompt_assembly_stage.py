"""
Stage 5: Assemble system and user prompts.
"""

from typing import TYPE_CHECKING

from ..base import TurnStage
from avatar_engine.services.memory_service import MemoryService
from avatar_engine.services.prompt_assembler import PromptAssembler

if TYPE_CHECKING:
    from ..context import TurnContext


class PromptAssemblyStage(TurnStage):
    """Build the prompts from the current memory and flow state."""

    def __init__(self, memory: MemoryService, assembler: PromptAssembler):
        self.memory = memory
        self.assembler = assembler

    async def process(self, context: "TurnContext") -> "TurnContext":
        # Flow transitions earlier in the turn update the memory mirror
        context.memory = await self.memory.get(context.session_id)
        context.prompt = self.assembler.build(
            intent=context.intent,
            user_message=context.user_message,
            avatar=context.avatar,
            memory=context.memory,
            rag_text=context.rag_text,
            chat_history_text=context.chat_history_text,
            flow_context=context.flow_context,
            session_context=context.session_context,
            counterpart=context.counterpart,
        )
        return context
