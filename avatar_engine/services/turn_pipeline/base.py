"""
Contract shared by the stages of one avatar turn.

A turn runs classification, flow resolution, memory update, knowledge
lookup, prompt assembly, reply generation and fulfillment, in that order,
all while holding the session's lock. Stages talk only through the
TurnContext: each reads what its predecessors filled in and sets its own
fields. Reading a field before its producer ran raises RuntimeError.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .context import TurnContext


class TurnStage(ABC):
    """One step of an avatar turn.

    Stages hold their collaborators (classifier, flow engine, memory) but no
    per-turn state; the same instance serves every session. An exception from
    ``process`` aborts the turn and is re-raised by TurnPipeline, so earlier
    stages' writes to memory or flows stay as they are.
    """

    @abstractmethod
    async def process(self, context: "TurnContext") -> "TurnContext":
        """Fill this stage's fields on ``context`` and return it."""

    @property
    def stage_name(self) -> str:
        """Key for ``stage_timings`` and the ``stage_name`` log field."""
        return type(self).__name__
