"""Repository implementations."""

from avatar_engine.persistence.repositories.flow_execution_repo import (
    FlowExecutionRepository,
)
from avatar_engine.persistence.repositories.mind_state_repo import MindStateRepository

__all__ = [
    "FlowExecutionRepository",
    "MindStateRepository",
]
