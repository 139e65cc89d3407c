"""Session memory models.

The MindStateStack is the per-session record of classified intents and
fulfillment bookkeeping. It is owned exclusively by MemoryService and is
persisted as a single document (full replace on every save).

Core Models:
    - MindStateStackItem: one classified turn, append-only
    - FulfilledIntentRecord: per-intent completion bookkeeping
    - FlowHistoryEntry: one terminal flow transition
    - MindStateStack: the whole per-session document
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from avatar_engine.core.clock import utc_now


class MindStateStackItem(BaseModel):
    """Record of one classified turn. Stack order is chronological."""

    tag: str = Field(description="Stack tag, usually the intent name")
    timestamp: datetime = Field(default_factory=utc_now)
    intent: str = Field(description="Resolved intent name")
    confidence: float = Field(ge=0.0, le=1.0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class FulfilledIntentRecord(BaseModel):
    """Fulfillment state of one intent within a session.

    completion_count only ever increases; fulfilled is cleared only by an
    explicit memory reset.
    """

    fulfilled: bool = False
    repeatable: bool = True
    completion_count: int = Field(default=0, ge=0)
    last_used: datetime = Field(default_factory=utc_now)
    max_age: Optional[float] = Field(
        default=None, description="Cooldown in seconds before the intent may fire again"
    )


class FlowHistoryEntry(BaseModel):
    """A flow reaching a terminal status."""

    flow_id: str
    status: str
    timestamp: datetime = Field(default_factory=utc_now)


class MindStateStack(BaseModel):
    """Per-session memory document."""

    session_id: str
    stack: List[MindStateStackItem] = Field(default_factory=list)
    fulfilled_intents: Dict[str, FulfilledIntentRecord] = Field(default_factory=dict)
    current_flow: Optional[str] = Field(
        default=None, description="Active flow id, mirrored from the flow engine"
    )
    current_flow_step: Optional[str] = Field(
        default=None, description="Active flow step id, mirrored from the flow engine"
    )
    flow_history: List[FlowHistoryEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def top(self) -> Optional[MindStateStackItem]:
        """Most recent stack item, if any."""
        return self.stack[-1] if self.stack else None

    def recent_intents(self, limit: int = 3) -> List[str]:
        """Names of the last ``limit`` intents, oldest first."""
        return [item.intent for item in self.stack[-limit:]]

    def fulfilled_intent_names(self) -> List[str]:
        return [
            name
            for name, record in self.fulfilled_intents.items()
            if record.fulfilled
        ]
