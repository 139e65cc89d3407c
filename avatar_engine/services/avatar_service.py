"""
Avatar conversation service.

Main entry point for handling a user message, delegating to a pipeline of
composable stages for classification, flow resolution, memory updates,
knowledge retrieval, prompt assembly and reply generation.

Every call that touches a session's memory or flow runs under that
session's lock.
"""

from typing import Any, Dict, List, Mapping, Optional

import structlog

from avatar_engine.core.definition_loader import DefinitionCatalog
from avatar_engine.core.exceptions import SessionError, ValidationError
from avatar_engine.core.logging import bind_context
from avatar_engine.domain.models.avatar import AvatarSelector, CounterpartProfile
from avatar_engine.domain.models.flow import FlowExecution
from avatar_engine.domain.models.memory import MindStateStack
from avatar_engine.llm.client import LLMClient
from avatar_engine.persistence.repositories.flow_execution_repo import (
    FlowExecutionRepository,
)
from avatar_engine.services.flow_engine import FlowEngine
from avatar_engine.services.intent_classifier import IntentClassifier
from avatar_engine.services.memory_service import MemoryService
from avatar_engine.services.prompt_assembler import PromptAssembler
from avatar_engine.services.protocols import IKnowledgeLookup
from avatar_engine.services.session_locks import SessionLockRegistry
from avatar_engine.services.step_policies import StepPolicyRegistry
from avatar_engine.services.turn_pipeline import TurnContext, TurnPipeline, TurnResult
from avatar_engine.services.turn_pipeline.stages import (
    ClassificationStage,
    FlowResolutionStage,
    FulfillmentStage,
    KnowledgeRetrievalStage,
    MemoryUpdateStage,
    PromptAssemblyStage,
    ResponseGenerationStage,
)

log = structlog.get_logger(__name__)


class AvatarService:
    """
    Orchestrates message handling for avatar sessions.

    Uses TurnPipeline with composable stages; also exposes the session-level
    operations the API offers (memory inspection and reset, flow
    cancellation, definition reload).
    """

    def __init__(
        self,
        catalog: DefinitionCatalog,
        memory: MemoryService,
        classifier: IntentClassifier,
        flow_engine: FlowEngine,
        assembler: PromptAssembler,
        flow_repository: FlowExecutionRepository,
        locks: Optional[SessionLockRegistry] = None,
        policies: Optional[StepPolicyRegistry] = None,
        knowledge_lookups: Optional[Mapping[str, IKnowledgeLookup]] = None,
        generation_client: Optional[LLMClient] = None,
    ):
        """
        Initialize the service and its pipeline.

        Args:
            catalog: Definition catalog shared by all services
            memory: Session memory service
            classifier: Intent classifier
            flow_engine: Flow engine
            assembler: Prompt assembler
            flow_repository: Repository used for flow history queries
            locks: Per-session lock registry (new one if omitted)
            policies: Step policies (built-ins if omitted)
            knowledge_lookups: Knowledge lookup per avatar type
            generation_client: Reply generator; None returns prompts only
        """
        self.catalog = catalog
        self.memory = memory
        self.classifier = classifier
        self.flow_engine = flow_engine
        self.assembler = assembler
        self.flow_repository = flow_repository
        self.locks = locks if locks is not None else SessionLockRegistry()
        self.policies = policies if policies is not None else StepPolicyRegistry.with_builtins()
        self.knowledge_lookups = dict(knowledge_lookups or {})
        self.generation_client = generation_client

        self.pipeline = self._build_pipeline()

        log.info(
            "avatar_service_initialized",
            pipeline_stages=len(self.pipeline.stages),
            knowledge_lookups=sorted(self.knowledge_lookups),
            generation_enabled=generation_client is not None,
        )

    def _build_pipeline(self) -> TurnPipeline:
        """
        Build the turn pipeline.

        Returns:
            TurnPipeline configured with 7 stages
        """
        stages = [
            ClassificationStage(self.memory, self.classifier),
            FlowResolutionStage(self.flow_engine, self.policies),
            MemoryUpdateStage(self.memory, self.classifier),
            KnowledgeRetrievalStage(self.catalog, self.knowledge_lookups),
            PromptAssemblyStage(self.memory, self.assembler),
            ResponseGenerationStage(self.generation_client),
            FulfillmentStage(self.memory),
        ]
        return TurnPipeline(stages=stages)

    @staticmethod
    def _require_session_id(session_id: str) -> None:
        if not session_id or not session_id.strip():
            raise SessionError("Session id must not be empty")

    async def process_message(
        self,
        session_id: str,
        user_message: str,
        avatar: AvatarSelector,
        chat_history_text: Optional[str] = None,
        session_context: Optional[Dict[str, Any]] = None,
        counterpart: Optional[CounterpartProfile] = None,
    ) -> TurnResult:
        """Handle one user message using the pipeline.

        Delegates to TurnPipeline which executes 7 stages sequentially:
        1. ClassificationStage - Load memory, classify the message
        2. FlowResolutionStage - Start / continue / advance the flow
        3. MemoryUpdateStage - Gate the intent, push it onto the stack
        4. KnowledgeRetrievalStage - Optional knowledge-base snippets
        5. PromptAssemblyStage - Build system and user prompts
        6. ResponseGenerationStage - Optional reply generation
        7. FulfillmentStage - Mark the intent fulfilled

        Args:
            session_id: Session id
            user_message: User's message text
            avatar: Standard or custom avatar selector
            chat_history_text: Rendered prior conversation, appended to the prompt
            session_context: Extra template variables for this session
            counterpart: Known details of the user's side

        Returns:
            TurnResult with intent, flow state, prompts and reply

        Raises:
            SessionError: If session_id is empty
            ValidationError: If user_message is empty
        """
        self._require_session_id(session_id)
        if not user_message or not user_message.strip():
            raise ValidationError("Message must not be empty")

        bind_context(session_id=session_id)
        log.info(
            "processing_message",
            session_id=session_id,
            avatar=avatar.key,
            message_length=len(user_message),
        )

        context = TurnContext(
            session_id=session_id,
            user_message=user_message.strip(),
            avatar=avatar,
            chat_history_text=chat_history_text,
            session_context=dict(session_context or {}),
            counterpart=counterpart,
        )

        async with self.locks.acquire(session_id):
            result = await self.pipeline.execute(context)

        log.info(
            "message_processed",
            session_id=session_id,
            intent=result.intent,
            flow_id=result.flow_id,
            flow_step=result.flow_step,
            latency_ms=result.latency_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    async def get_memory(self, session_id: str) -> MindStateStack:
        self._require_session_id(session_id)
        async with self.locks.acquire(session_id):
            return await self.memory.get(session_id)

    async def reset_session(self, session_id: str) -> MindStateStack:
        """Cancel any active flow, then replace memory with an empty state."""
        self._require_session_id(session_id)
        async with self.locks.acquire(session_id):
            await self.flow_engine.cancel_flow(session_id)
            return await self.memory.reset(session_id)

    async def cancel_flow(self, session_id: str) -> FlowExecution:
        """
        Raises:
            SessionError: If the session has no active flow
        """
        self._require_session_id(session_id)
        async with self.locks.acquire(session_id):
            execution = await self.flow_engine.cancel_flow(session_id)
        if execution is None:
            raise SessionError(f"Session {session_id} has no active flow")
        return execution

    async def get_flow_status(self, session_id: str) -> Dict[str, Any]:
        """Active flow (if any), its progress, and the session's flow history."""
        self._require_session_id(session_id)
        async with self.locks.acquire(session_id):
            active = await self.flow_engine.get_active_flow(session_id)
            progress = await self.flow_engine.get_flow_progress(session_id) if active else 0.0
            history: List[FlowExecution] = await self.flow_repository.list_for_session(
                session_id
            )
        return {"active": active, "progress": progress, "history": history}

    def reload_definitions(self, avatar: Optional[AvatarSelector] = None) -> None:
        """Drop cached definitions so the next turn reads the YAML again."""
        self.catalog.reload(avatar)
        log.info("definitions_reloaded", avatar=avatar.key if avatar else "all")
