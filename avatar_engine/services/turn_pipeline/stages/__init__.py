"""
Pipeline stages, in execution order.
"""

from .classification_stage import ClassificationStage
from .flow_resolution_stage import FlowResolutionStage
from .memory_update_stage import MemoryUpdateStage
from .knowledge_retrieval_stage import KnowledgeRetrievalStage
from .prompt_assembly_stage import PromptAssemblyStage
from .response_generation_stage import ResponseGenerationStage
from .fulfillment_stage import FulfillmentStage

__all__ = [
    "ClassificationStage",
    "FlowResolutionStage",
    "MemoryUpdateStage",
    "KnowledgeRetrievalStage",
    "PromptAssemblyStage",
    "ResponseGenerationStage",
    "FulfillmentStage",
]
