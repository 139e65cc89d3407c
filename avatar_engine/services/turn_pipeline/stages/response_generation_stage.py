"""
Stage 6: Generate the avatar's reply.
"""

from typing import TYPE_CHECKING, Optional

import structlog

from ..base import TurnStage
from avatar_engine.llm.client import LLMClient

log = structlog.get_logger(__name__)

if TYPE_CHECKING:
    from ..context import TurnContext


class ResponseGenerationStage(TurnStage):
    """
    Call the generation client with the assembled prompts.

    Without a client the turn ends with the prompts only (reply stays None)
    so a downstream generator can use them.
    """

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self.llm_client = llm_client

    async def process(self, context: "TurnContext") -> "TurnContext":
        if self.llm_client is None:
            log.debug("generation_skipped", session_id=context.session_id)
            return context

        response = await self.llm_client.complete(
            prompt=context.prompt.user_prompt,
            system=context.prompt.system_prompt,
        )
        context.reply = response.content.strip()
        return context
