"""Flow execution models.

A FlowExecution is the runtime record of one flow for one session. It is
owned exclusively by FlowEngine. At most one execution per session is
``active`` at any time; ``current_step`` always references a step of the
owning FlowDefinition.

Lifecycle:
    active -> completed   (terminal step answered)
    active -> timeout     (max_duration exceeded or idle sweep)
    active -> cancelled   (explicit cancel or superseded by another flow)
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from avatar_engine.core.clock import utc_now
from avatar_engine.domain.models.avatar import AvatarSelector


class FlowStatus(str, Enum):
    """Flow execution status."""

    ACTIVE = "active"
    COMPLETED = "completed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not FlowStatus.ACTIVE


class FlowStepExecution(BaseModel):
    """Visit of one step inside an execution."""

    step_id: str
    step_name: str = ""
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    status: str = Field(default="active", description="active | completed")


class FlowExecution(BaseModel):
    """Runtime state of one flow for one session."""

    id: str
    session_id: str
    flow_id: str
    flow_name: str = ""
    avatar: AvatarSelector = Field(description="Avatar whose definitions apply")
    current_step: str
    completed_steps: List[str] = Field(default_factory=list)
    step_executions: List[FlowStepExecution] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    last_activity: datetime = Field(default_factory=utc_now)
    status: FlowStatus = FlowStatus.ACTIVE
    context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status is FlowStatus.ACTIVE

    def open_step_execution(self, step_id: str) -> Optional[FlowStepExecution]:
        """Latest still-open visit of ``step_id``."""
        for execution in reversed(self.step_executions):
            if execution.step_id == step_id and execution.end_time is None:
                return execution
        return None
