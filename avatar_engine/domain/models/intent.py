"""Intent classification result model."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class IntentClassificationResult(BaseModel):
    """Output of IntentClassifier.classify()."""

    intent: str
    confidence: float = Field(ge=0.0, le=1.0)
    requires_flow: bool = False
    flow_name: Optional[str] = None
    is_continuation: bool = False
    entities: Dict[str, Any] = Field(default_factory=dict)
    source: str = Field(
        default="keyword", description="llm | keyword | default | override"
    )
