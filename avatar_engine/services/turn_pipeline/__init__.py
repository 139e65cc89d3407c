"""
Turn processing pipeline.

Handling one user message is broken into small stages (classification,
flow resolution, memory update, knowledge retrieval, prompt assembly,
response generation, fulfillment) that share a TurnContext.
"""

from .base import TurnStage
from .context import TurnContext
from .pipeline import TurnPipeline
from .result import TurnResult

__all__ = [
    "TurnStage",
    "TurnContext",
    "TurnPipeline",
    "TurnResult",
]
