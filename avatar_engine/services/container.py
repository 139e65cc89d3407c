"""
Service construction.

Builds every engine service once, wired explicitly, for the FastAPI
lifespan (or a test) to hold and tear down.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import structlog

from avatar_engine.core.clock import Clock, utc_now
from avatar_engine.core.config import Settings, settings as default_settings
from avatar_engine.core.definition_loader import DefinitionCatalog
from avatar_engine.llm.client import get_optional_llm_client
from avatar_engine.persistence.repositories import (
    FlowExecutionRepository,
    MindStateRepository,
)
from avatar_engine.services.avatar_service import AvatarService
from avatar_engine.services.flow_engine import FlowEngine
from avatar_engine.services.intent_classifier import IntentClassifier
from avatar_engine.services.maintenance import MaintenanceSweeper
from avatar_engine.services.memory_service import MemoryService
from avatar_engine.services.prompt_assembler import PromptAssembler
from avatar_engine.services.protocols import IKnowledgeLookup
from avatar_engine.services.session_locks import SessionLockRegistry
from avatar_engine.services.step_policies import (
    EmailCaptureStepPolicy,
    StepPolicyRegistry,
)

log = structlog.get_logger(__name__)

_UNSET = object()


@dataclass
class ServiceContainer:
    """Engine services sharing one catalog, lock registry and database."""

    catalog: DefinitionCatalog
    memory: MemoryService
    classifier: IntentClassifier
    flow_engine: FlowEngine
    assembler: PromptAssembler
    locks: SessionLockRegistry
    sweeper: MaintenanceSweeper
    avatar_service: AvatarService


def build_services(
    config: Optional[Settings] = None,
    clock: Clock = utc_now,
    knowledge_lookups: Optional[Mapping[str, IKnowledgeLookup]] = None,
    classification_client=_UNSET,
    generation_client=_UNSET,
) -> ServiceContainer:
    """
    Construct the engine.

    Args:
        config: Settings to use (module settings if omitted)
        clock: Time source shared by memory, classifier, flows and prompts
        knowledge_lookups: Knowledge lookup per avatar type
        classification_client: LLMClient or None; resolved from settings if omitted
        generation_client: LLMClient or None; resolved from settings if omitted

    Raises:
        ConfigurationError: If an LLM provider override is unknown
    """
    config = config or default_settings

    if classification_client is _UNSET:
        classification_client = get_optional_llm_client("classification")
    if generation_client is _UNSET:
        generation_client = get_optional_llm_client("generation")

    db_path = str(Path(config.database_path))
    catalog = DefinitionCatalog(Path(config.config_dir))
    flow_repository = FlowExecutionRepository(db_path)
    locks = SessionLockRegistry()

    memory = MemoryService(
        MindStateRepository(db_path),
        clock=clock,
        stack_retention_seconds=config.stack_retention_seconds,
        continuation_window_seconds=config.continuation_window_seconds,
    )
    classifier = IntentClassifier(
        catalog,
        llm_client=classification_client,
        clock=clock,
        general_intent=config.general_intent,
        comment_intent=config.comment_intent,
        continuation_window_seconds=config.continuation_window_seconds,
    )
    flow_engine = FlowEngine(
        catalog,
        memory,
        flow_repository,
        clock=clock,
        idle_timeout_seconds=config.flow_idle_timeout_seconds,
    )
    assembler = PromptAssembler(catalog, clock=clock)

    policies = StepPolicyRegistry.with_builtins()
    policies.register(
        EmailCaptureStepPolicy(
            email_provided_intent=config.email_provided_intent,
            email_promise_intent=config.email_promise_intent,
        )
    )

    avatar_service = AvatarService(
        catalog=catalog,
        memory=memory,
        classifier=classifier,
        flow_engine=flow_engine,
        assembler=assembler,
        flow_repository=flow_repository,
        locks=locks,
        policies=policies,
        knowledge_lookups=knowledge_lookups,
        generation_client=generation_client,
    )
    sweeper = MaintenanceSweeper(
        flow_engine,
        memory,
        locks,
        interval_seconds=config.sweep_interval_seconds,
        idle_seconds=config.flow_idle_timeout_seconds,
    )

    log.info(
        "services_built",
        config_dir=str(config.config_dir),
        database_path=db_path,
        classification_llm=classification_client is not None,
        generation_llm=generation_client is not None,
    )
    return ServiceContainer(
        catalog=catalog,
        memory=memory,
        classifier=classifier,
        flow_engine=flow_engine,
        assembler=assembler,
        locks=locks,
        sweeper=sweeper,
        avatar_service=avatar_service,
    )
