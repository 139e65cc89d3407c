"""
Flow engine: per-session state machine over scripted flows.

Each session has at most one ``active`` FlowExecution. Executions move
active -> completed | timeout | cancelled and never leave a terminal
state. Every transition is written through to FlowExecutionRepository and
mirrored into session memory (current flow/step, flow history).

Step traversal is linear by default: ``first_successor`` follows
``next_steps[0]``. Pass another ``next_step_selector`` to branch.

Callers must hold the session's lock around mutating calls.
"""

from typing import Callable, Dict, List, Optional
from uuid import uuid4

import structlog

from avatar_engine.core.clock import Clock, utc_now
from avatar_engine.core.config import settings
from avatar_engine.core.definition_loader import DefinitionCatalog
from avatar_engine.core.exceptions import ConfigurationError, PersistenceError
from avatar_engine.domain.models.avatar import AvatarSelector
from avatar_engine.domain.models.definitions import (
    COMPLETED_STEP,
    FlowDefinition,
    FlowStep,
)
from avatar_engine.domain.models.flow import (
    FlowExecution,
    FlowStatus,
    FlowStepExecution,
)
from avatar_engine.persistence.repositories.flow_execution_repo import (
    FlowExecutionRepository,
)
from avatar_engine.services.memory_service import MemoryService

log = structlog.get_logger(__name__)

NextStepSelector = Callable[[FlowStep, FlowDefinition, FlowExecution], Optional[str]]


def first_successor(
    step: FlowStep, flow: FlowDefinition, execution: FlowExecution
) -> Optional[str]:
    """Linear traversal: the first listed successor, None when terminal."""
    if step.is_terminal:
        return None
    if len(step.next_steps) > 1:
        log.debug(
            "flow_branch_ignored",
            flow_id=flow.id,
            step_id=step.id,
            successors=step.next_steps,
        )
    return step.next_steps[0]


class FlowEngine:
    """Starts, advances and terminates flow executions."""

    def __init__(
        self,
        catalog: DefinitionCatalog,
        memory: MemoryService,
        repository: FlowExecutionRepository,
        clock: Clock = utc_now,
        next_step_selector: NextStepSelector = first_successor,
        idle_timeout_seconds: Optional[float] = None,
    ):
        self.catalog = catalog
        self.memory = memory
        self.repository = repository
        self.clock = clock
        self.next_step_selector = next_step_selector
        self.idle_timeout_seconds = (
            idle_timeout_seconds
            if idle_timeout_seconds is not None
            else settings.flow_idle_timeout_seconds
        )
        # Latest execution per session (active or terminal)
        self._executions: Dict[str, FlowExecution] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_flow_definition(
        self, avatar: AvatarSelector, flow_id: str
    ) -> Optional[FlowDefinition]:
        return self.catalog.resolve(avatar).get_flow(flow_id)

    def find_flow_for_intent(
        self, avatar: AvatarSelector, intent: str
    ) -> Optional[FlowDefinition]:
        """Highest-priority flow listing ``intent``; ties keep load order."""
        flows = sorted(
            self.catalog.resolve(avatar).flows, key=lambda f: f.priority, reverse=True
        )
        return next((f for f in flows if intent in f.entry_intents), None)

    def _definition_for(self, execution: FlowExecution) -> FlowDefinition:
        flow = self.get_flow_definition(execution.avatar, execution.flow_id)
        if flow is None:
            raise ConfigurationError(
                f"Flow '{execution.flow_id}' missing from definitions of {execution.avatar.key}"
            )
        return flow

    @staticmethod
    def _step(flow: FlowDefinition, step_id: str) -> FlowStep:
        step = flow.get_step(step_id)
        if step is None:
            raise ConfigurationError(f"Step '{step_id}' missing from flow '{flow.id}'")
        return step

    async def _load(self, session_id: str) -> Optional[FlowExecution]:
        if session_id in self._executions:
            return self._executions[session_id]
        execution = await self.repository.get_active(session_id)
        if execution is not None:
            self._executions[session_id] = execution
            log.info(
                "flow_execution_restored",
                session_id=session_id,
                flow_id=execution.flow_id,
            )
        return execution

    async def get_active_flow(self, session_id: str) -> Optional[FlowExecution]:
        execution = await self._load(session_id)
        return execution if execution is not None and execution.is_active else None

    def get_current_step(self, execution: FlowExecution) -> FlowStep:
        return self._step(self._definition_for(execution), execution.current_step)

    def tracked_session_ids(self) -> List[str]:
        return list(self._executions)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _persist(self, execution: FlowExecution) -> None:
        try:
            await self.repository.save(execution)
        except PersistenceError:
            # In-memory copy no longer matches the store; reload on next access
            if self._executions.get(execution.session_id) is execution:
                del self._executions[execution.session_id]
            log.error(
                "flow_execution_save_failed",
                session_id=execution.session_id,
                flow_id=execution.flow_id,
            )
            raise

    async def _enter_step(self, execution: FlowExecution, step: FlowStep) -> None:
        now = self.clock()
        execution.current_step = step.id
        execution.last_activity = now
        execution.step_executions.append(
            FlowStepExecution(step_id=step.id, step_name=step.name, start_time=now)
        )
        await self._persist(execution)
        await self.memory.update_current_flow(
            execution.session_id, execution.flow_id, step.id
        )

    async def start_flow(
        self,
        session_id: str,
        intent: str,
        avatar: AvatarSelector,
        user_message: str,
    ) -> Optional[FlowExecution]:
        """
        Start the flow entered by ``intent``.

        Returns:
            The new execution, the already-active execution of the same
            flow, or None when no flow lists the intent.
        """
        flow = self.find_flow_for_intent(avatar, intent)
        if flow is None:
            log.debug("no_flow_for_intent", session_id=session_id, intent=intent)
            return None

        current = await self.get_active_flow(session_id)
        if current is not None and current.flow_id == flow.id:
            log.info("flow_already_active", session_id=session_id, flow_id=flow.id)
            return current

        if not flow.repeatable:
            memory = await self.memory.get(session_id)
            if any(
                entry.flow_id == flow.id and entry.status == FlowStatus.COMPLETED.value
                for entry in memory.flow_history
            ):
                log.info("flow_not_repeatable", session_id=session_id, flow_id=flow.id)
                return None

        if current is not None:
            log.info(
                "flow_superseded",
                session_id=session_id,
                previous_flow=current.flow_id,
                new_flow=flow.id,
            )
            await self.cancel_flow(session_id)

        first_step = flow.first_step
        now = self.clock()
        execution = FlowExecution(
            id=f"{session_id}-{flow.id}-{uuid4().hex[:12]}",
            session_id=session_id,
            flow_id=flow.id,
            flow_name=flow.name,
            avatar=avatar,
            current_step=first_step.id,
            start_time=now,
            last_activity=now,
            context={"user_message": user_message, "avatar": avatar.key, "intent": intent},
        )
        self._executions[session_id] = execution
        await self._enter_step(execution, first_step)

        log.info(
            "flow_started",
            session_id=session_id,
            flow_id=flow.id,
            step=first_step.id,
            intent=intent,
        )
        return execution

    async def should_continue_flow(self, session_id: str, intent: str) -> bool:
        """
        Whether the active flow carries on for this turn.

        Entry intents always continue. Otherwise the flow continues until
        ``max_duration`` has elapsed, at which point it times out.
        """
        execution = await self.get_active_flow(session_id)
        if execution is None:
            return False

        flow = self._definition_for(execution)
        if intent in flow.entry_intents:
            return True

        elapsed = (self.clock() - execution.start_time).total_seconds()
        if elapsed > flow.max_duration:
            log.info(
                "flow_max_duration_exceeded",
                session_id=session_id,
                flow_id=flow.id,
                elapsed_seconds=round(elapsed, 1),
                max_duration=flow.max_duration,
            )
            await self.timeout_flow(session_id)
            return False
        return True

    async def progress_flow(
        self,
        session_id: str,
        user_message: str,
        completed_step_id: Optional[str] = None,
        context_updates: Optional[Dict] = None,
    ) -> Optional[FlowExecution]:
        """
        Advance the active flow.

        Args:
            session_id: Session id
            user_message: Message that answered the step
            completed_step_id: Step to mark completed first (idempotent)
            context_updates: Values merged into the execution context

        Returns:
            The execution (possibly now completed), or None without an active flow

        Raises:
            ConfigurationError: If the current or successor step is not defined
        """
        execution = await self.get_active_flow(session_id)
        if execution is None:
            return None

        flow = self._definition_for(execution)
        now = self.clock()

        if context_updates:
            execution.context.update(context_updates)

        if completed_step_id:
            if completed_step_id not in execution.completed_steps:
                execution.completed_steps.append(completed_step_id)
            step_execution = execution.open_step_execution(completed_step_id)
            if step_execution is not None:
                step_execution.status = "completed"
                step_execution.end_time = now

        current_step = self._step(flow, execution.current_step)
        next_step_id = self.next_step_selector(current_step, flow, execution)

        if next_step_id is None or next_step_id == COMPLETED_STEP:
            await self.complete_flow(session_id)
            return execution

        next_step = self._step(flow, next_step_id)
        execution.context["user_message"] = user_message
        await self._enter_step(execution, next_step)

        log.info(
            "flow_progressed",
            session_id=session_id,
            flow_id=flow.id,
            from_step=current_step.id,
            to_step=next_step.id,
        )
        return execution

    async def _finish(
        self, session_id: str, status: FlowStatus
    ) -> Optional[FlowExecution]:
        execution = await self.get_active_flow(session_id)
        if execution is None:
            return None

        now = self.clock()
        execution.status = status
        execution.end_time = now
        execution.last_activity = now
        await self._persist(execution)
        await self.memory.update_flow_status(session_id, execution.flow_id, status)

        log.info(
            "flow_finished",
            session_id=session_id,
            flow_id=execution.flow_id,
            status=status.value,
            completed_steps=execution.completed_steps,
        )
        return execution

    async def complete_flow(self, session_id: str) -> Optional[FlowExecution]:
        return await self._finish(session_id, FlowStatus.COMPLETED)

    async def timeout_flow(self, session_id: str) -> Optional[FlowExecution]:
        return await self._finish(session_id, FlowStatus.TIMEOUT)

    async def cancel_flow(self, session_id: str) -> Optional[FlowExecution]:
        """Cancel the active flow and drop it from the in-memory map."""
        execution = await self._finish(session_id, FlowStatus.CANCELLED)
        if execution is not None:
            self._executions.pop(session_id, None)
        return execution

    # ------------------------------------------------------------------
    # Progress queries
    # ------------------------------------------------------------------

    async def is_flow_completed(self, session_id: str) -> bool:
        """Whether every success-criteria step of the current flow is completed."""
        execution = await self._load(session_id)
        if execution is None:
            return False
        flow = self._definition_for(execution)
        return all(step_id in execution.completed_steps for step_id in flow.success_criteria)

    async def get_flow_progress(self, session_id: str) -> float:
        """Percentage of success-criteria steps completed (0-100)."""
        execution = await self._load(session_id)
        if execution is None:
            return 0.0
        flow = self._definition_for(execution)
        if not flow.success_criteria:
            return 100.0 if execution.status is FlowStatus.COMPLETED else 0.0
        done = sum(1 for s in flow.success_criteria if s in execution.completed_steps)
        return round(done / len(flow.success_criteria) * 100, 1)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def expire_if_idle(self, session_id: str) -> bool:
        """Time out an idle active flow and forget stale terminal ones.

        Returns:
            True if the session's execution was removed from the map.
        """
        execution = self._executions.get(session_id)
        if execution is None:
            return False

        idle = (self.clock() - execution.last_activity).total_seconds()
        if idle <= self.idle_timeout_seconds:
            return False

        if execution.is_active:
            log.info(
                "flow_idle_timeout",
                session_id=session_id,
                flow_id=execution.flow_id,
                idle_seconds=round(idle, 1),
            )
            await self.timeout_flow(session_id)
        self._executions.pop(session_id, None)
        return True

    async def cleanup_inactive_flows(self) -> int:
        """Sweep every tracked session; returns the number removed.

        Does not take session locks; MaintenanceSweeper wraps
        ``expire_if_idle`` in the session lock instead.
        """
        removed = 0
        for session_id in self.tracked_session_ids():
            if await self.expire_if_idle(session_id):
                removed += 1
        return removed
