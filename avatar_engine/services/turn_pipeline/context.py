"""
Turn context carried through all pipeline stages.

Inputs are set by the caller; each stage fills in its own outputs. The
properties raise RuntimeError when read before the producing stage ran,
so a mis-ordered pipeline fails loudly instead of using empty state.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from avatar_engine.domain.models.avatar import AvatarSelector, CounterpartProfile
from avatar_engine.domain.models.definitions import IntentDefinition
from avatar_engine.domain.models.flow import FlowExecution
from avatar_engine.domain.models.intent import IntentClassificationResult
from avatar_engine.domain.models.memory import MindStateStack
from avatar_engine.services.prompt_assembler import AssembledPrompt


@dataclass
class TurnContext:
    """State accumulated while handling one user message."""

    # Inputs
    session_id: str
    user_message: str
    avatar: AvatarSelector
    chat_history_text: Optional[str] = None
    session_context: Dict[str, Any] = field(default_factory=dict)
    counterpart: Optional[CounterpartProfile] = None

    # ClassificationStage
    memory: Optional[MindStateStack] = None
    classification: Optional[IntentClassificationResult] = None

    # FlowResolutionStage
    active_flow: Optional[FlowExecution] = None
    flow_started: bool = False
    flow_progressed: bool = False

    # MemoryUpdateStage
    intent_definition: Optional[IntentDefinition] = None
    intent_downgraded: bool = False

    # KnowledgeRetrievalStage
    rag_text: Optional[str] = None

    # PromptAssemblyStage
    prompt: Optional[AssembledPrompt] = None

    # ResponseGenerationStage
    reply: Optional[str] = None

    stage_timings: Dict[str, float] = field(default_factory=dict)

    @property
    def intent(self) -> str:
        if self.classification is None:
            raise RuntimeError("intent accessed before ClassificationStage ran")
        return self.classification.intent

    @property
    def mind_state(self) -> MindStateStack:
        if self.memory is None:
            raise RuntimeError("memory accessed before ClassificationStage ran")
        return self.memory

    @property
    def flow_context(self) -> Dict[str, Any]:
        """Context values of the active flow (empty without one)."""
        if self.active_flow is None or not self.active_flow.is_active:
            return {}
        return dict(self.active_flow.context)
