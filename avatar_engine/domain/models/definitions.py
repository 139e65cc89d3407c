"""Static definition models loaded from YAML configuration.

These are immutable at runtime. The active set for an avatar is resolved by
DefinitionCatalog and swapped wholesale on an explicit reload.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Sentinel successor marking a terminal step
COMPLETED_STEP = "completed"


class IntentDefinition(BaseModel):
    """One classifiable intent."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Unique intent name")
    description: str = Field(default="")
    keywords: List[str] = Field(
        default_factory=list, description="Substrings for the keyword fallback"
    )
    examples: List[str] = Field(default_factory=list)
    requires_flow: bool = False
    flow_name: Optional[str] = None
    priority: int = 0
    confidence_threshold: float = Field(default=0.0, ge=0.0, le=1.0)
    repeatable: bool = True
    max_age: Optional[float] = Field(
        default=None, ge=0, description="Cooldown seconds between firings"
    )
    # Custom avatars may carry their own prompt pair
    system_prompt_template: Optional[str] = None
    user_prompt_template: Optional[str] = None


class FlowStep(BaseModel):
    """One node of a flow's step graph."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    required: bool = True
    next_steps: List[str] = Field(
        default_factory=list,
        description="Successor step ids, or 'completed' for a terminal step",
    )
    completion_rule: Optional[str] = Field(
        default=None, description="Named step policy overriding the flow's rule"
    )

    @property
    def is_terminal(self) -> bool:
        return not self.next_steps or COMPLETED_STEP in self.next_steps


class FlowDefinition(BaseModel):
    """A scripted multi-step interaction."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    entry_intents: List[str] = Field(default_factory=list)
    priority: int = 0
    steps: List[FlowStep] = Field(default_factory=list)
    success_criteria: List[str] = Field(
        default_factory=list, description="Step ids that must complete for success"
    )
    max_duration: float = Field(default=600.0, gt=0, description="Seconds")
    repeatable: bool = True
    completion_rule: Optional[str] = Field(
        default=None, description="Named step policy applied to every step"
    )

    @property
    def first_step(self) -> Optional[FlowStep]:
        return self.steps[0] if self.steps else None

    def get_step(self, step_id: str) -> Optional[FlowStep]:
        return next((step for step in self.steps if step.id == step_id), None)


class PromptTemplate(BaseModel):
    """Instruction/user text pair selected by intent or flow step."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    intent: str = Field(description="Intent name or flow-step mapping key")
    system_prompt: str = ""
    user_prompt_template: str = "{{user_message}}"
    variables: List[str] = Field(default_factory=list)
    priority: int = 0
