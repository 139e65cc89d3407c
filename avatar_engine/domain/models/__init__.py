"""Domain models package."""

from .avatar import (
    AvatarPersona,
    AvatarSelector,
    CompanyProfile,
    CounterpartProfile,
    CustomAvatar,
    StandardAvatar,
)
from .definitions import (
    COMPLETED_STEP,
    FlowDefinition,
    FlowStep,
    IntentDefinition,
    PromptTemplate,
)
from .flow import FlowExecution, FlowStatus, FlowStepExecution
from .intent import IntentClassificationResult
from .memory import (
    FlowHistoryEntry,
    FulfilledIntentRecord,
    MindStateStack,
    MindStateStackItem,
)

__all__ = [
    "AvatarPersona",
    "AvatarSelector",
    "CompanyProfile",
    "CounterpartProfile",
    "CustomAvatar",
    "StandardAvatar",
    "COMPLETED_STEP",
    "FlowDefinition",
    "FlowStep",
    "IntentDefinition",
    "PromptTemplate",
    "FlowExecution",
    "FlowStatus",
    "FlowStepExecution",
    "IntentClassificationResult",
    "FlowHistoryEntry",
    "FulfilledIntentRecord",
    "MindStateStack",
    "MindStateStackItem",
]
