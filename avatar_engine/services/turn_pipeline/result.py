"""
Result object for the turn pipeline.

Returned once all stages complete; the API serializes it as the response
to a posted message.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class TurnResult:
    """Outcome of handling a single user message."""

    session_id: str
    intent: str
    confidence: float
    is_continuation: bool
    system_prompt: str
    user_prompt: str
    template_id: str
    flow_id: Optional[str] = None
    flow_step: Optional[str] = None
    flow_status: Optional[str] = None
    reply: Optional[str] = None  # None when no generation client is configured
    latency_ms: int = 0
    stage_timings: Dict[str, float] = field(default_factory=dict)
