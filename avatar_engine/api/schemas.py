"""
API request/response schemas.

Pydantic models for API validation and serialization.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from avatar_engine.domain.models.avatar import AvatarSelector, CounterpartProfile
from avatar_engine.domain.models.flow import FlowExecution


# ============ MESSAGE SCHEMAS ============


class MessageRequest(BaseModel):
    """A user message for one session."""

    # Emptiness is checked by the service so it maps to a 400, not a 422
    text: str = Field(..., max_length=5000, description="User's message text")
    avatar: Optional[AvatarSelector] = Field(
        default=None,
        description="Avatar selection; the default avatar type when omitted",
    )
    chat_history: Optional[str] = Field(
        default=None, description="Rendered prior conversation"
    )
    session_context: Dict[str, Any] = Field(
        default_factory=dict, description="Extra template variables"
    )
    counterpart: Optional[CounterpartProfile] = None


class FlowStateSchema(BaseModel):
    """Flow state after the turn."""

    flow_id: str
    step: Optional[str] = None
    status: str


class MessageResponse(BaseModel):
    """Outcome of one turn."""

    session_id: str
    intent: str
    confidence: float
    is_continuation: bool
    flow: Optional[FlowStateSchema] = None
    template_id: str
    system_prompt: str
    user_prompt: str
    reply: Optional[str] = Field(
        default=None, description="Generated reply; null when generation is disabled"
    )
    latency_ms: int = 0
    stage_timings: Dict[str, float] = Field(default_factory=dict)


# ============ FLOW SCHEMAS ============


class FlowStatusResponse(BaseModel):
    """Active flow, its progress and the session's flow history."""

    session_id: str
    active: Optional[FlowExecution] = None
    progress: float = Field(default=0.0, description="Success-criteria progress, 0-100")
    history: List[FlowExecution] = Field(default_factory=list)


# ============ AVATAR SCHEMAS ============


class ReloadRequest(BaseModel):
    """Which avatar's definitions to reload; all when omitted."""

    avatar: Optional[AvatarSelector] = None


class ReloadResponse(BaseModel):
    reloaded: str
