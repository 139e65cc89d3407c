"""
Session memory service.

Owns the per-session MindStateStack: the chronological stack of classified
intents, the fulfillment bookkeeping that gates repeated intents, the
current-flow mirror read by the prompt assembler, and the flow history.

State is cached in-process and written through to MindStateRepository on
every mutation. Persistence errors propagate; memory is load-bearing.

Callers must hold the session's lock (see SessionLockRegistry) around any
read-modify-write sequence.
"""

from typing import Any, Dict, List, Optional

import structlog

from avatar_engine.core.clock import Clock, utc_now
from avatar_engine.core.config import settings
from avatar_engine.core.exceptions import PersistenceError
from avatar_engine.domain.models.flow import FlowStatus
from avatar_engine.domain.models.memory import (
    FlowHistoryEntry,
    FulfilledIntentRecord,
    MindStateStack,
    MindStateStackItem,
)
from avatar_engine.persistence.repositories.mind_state_repo import MindStateRepository

log = structlog.get_logger(__name__)


def is_continuation(
    state: MindStateStack, intent: str, now, window_seconds: float
) -> bool:
    """True iff the top stack item has ``intent`` and is younger than the window."""
    top = state.top
    if top is None or top.intent != intent:
        return False
    return (now - top.timestamp).total_seconds() < window_seconds


class MemoryService:
    """Per-session intent history and fulfillment bookkeeping."""

    def __init__(
        self,
        repository: MindStateRepository,
        clock: Clock = utc_now,
        stack_retention_seconds: Optional[float] = None,
        continuation_window_seconds: Optional[float] = None,
    ):
        self.repository = repository
        self.clock = clock
        self.stack_retention_seconds = (
            stack_retention_seconds
            if stack_retention_seconds is not None
            else settings.stack_retention_seconds
        )
        self.continuation_window_seconds = (
            continuation_window_seconds
            if continuation_window_seconds is not None
            else settings.continuation_window_seconds
        )
        self._cache: Dict[str, MindStateStack] = {}

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    async def get(self, session_id: str) -> MindStateStack:
        """Return cached state, load it, or create and persist an empty one."""
        state = self._cache.get(session_id)
        if state is not None:
            return state

        state = await self.repository.load(session_id)
        if state is None:
            now = self.clock()
            state = MindStateStack(session_id=session_id, created_at=now, updated_at=now)
            await self.repository.save(state)
            log.info("mind_state_created", session_id=session_id)

        self._cache[session_id] = state
        return state

    async def _save(self, state: MindStateStack) -> MindStateStack:
        state.updated_at = self.clock()
        try:
            await self.repository.save(state)
        except PersistenceError:
            # Cached copy no longer matches the store; reload on next access
            self._cache.pop(state.session_id, None)
            raise
        return state

    def cached_session_ids(self) -> List[str]:
        return list(self._cache)

    def evict_if_idle(self, session_id: str, idle_seconds: float) -> bool:
        """Drop a cached state untouched for ``idle_seconds``; the store keeps it."""
        state = self._cache.get(session_id)
        if state is None:
            return False
        if (self.clock() - state.updated_at).total_seconds() <= idle_seconds:
            return False
        del self._cache[session_id]
        log.debug("mind_state_evicted", session_id=session_id)
        return True

    # ------------------------------------------------------------------
    # Stack
    # ------------------------------------------------------------------

    @staticmethod
    def _record(
        state: MindStateStack,
        intent: str,
        repeatable: bool,
        max_age: Optional[float],
        now,
    ) -> FulfilledIntentRecord:
        record = state.fulfilled_intents.get(intent)
        if record is None:
            record = FulfilledIntentRecord(
                repeatable=repeatable, max_age=max_age, last_used=now
            )
            state.fulfilled_intents[intent] = record
        return record

    async def push_intent(
        self,
        session_id: str,
        intent: str,
        confidence: float,
        metadata: Optional[Dict[str, Any]] = None,
        repeatable: bool = True,
        max_age: Optional[float] = None,
    ) -> MindStateStack:
        """Append a stack item and touch the intent's fulfillment record.

        ``repeatable`` and ``max_age`` only apply when the record is first
        created for this session.
        """
        state = await self.get(session_id)
        now = self.clock()

        state.stack.append(
            MindStateStackItem(
                tag=intent,
                timestamp=now,
                intent=intent,
                confidence=confidence,
                metadata=metadata or {},
            )
        )
        record = self._record(state, intent, repeatable, max_age, now)
        record.last_used = now

        log.debug(
            "intent_pushed",
            session_id=session_id,
            intent=intent,
            confidence=confidence,
            stack_size=len(state.stack),
        )
        return await self._save(state)

    async def pop_intent(self, session_id: str) -> Optional[MindStateStackItem]:
        """Remove and return the most recent stack item."""
        state = await self.get(session_id)
        if not state.stack:
            return None
        item = state.stack.pop()
        await self._save(state)
        return item

    async def get_intent_history(
        self, session_id: str, limit: int = 10
    ) -> List[MindStateStackItem]:
        """Most recent stack items, newest first."""
        state = await self.get(session_id)
        return list(reversed(state.stack[-limit:])) if limit > 0 else []

    async def is_intent_continuation(self, session_id: str, intent: str) -> bool:
        state = await self.get(session_id)
        return is_continuation(
            state, intent, self.clock(), self.continuation_window_seconds
        )

    # ------------------------------------------------------------------
    # Fulfillment
    # ------------------------------------------------------------------

    async def can_execute_intent(self, session_id: str, intent: str) -> bool:
        """Whether ``intent`` may fire now.

        False for a fulfilled non-repeatable intent, or while its ``max_age``
        cooldown since ``last_used`` has not elapsed.
        """
        state = await self.get(session_id)
        record = state.fulfilled_intents.get(intent)
        if record is None:
            return True

        if not record.repeatable and record.fulfilled:
            log.info("intent_blocked_not_repeatable", session_id=session_id, intent=intent)
            return False

        if record.max_age is not None:
            age = (self.clock() - record.last_used).total_seconds()
            if age < record.max_age:
                log.info(
                    "intent_blocked_cooldown",
                    session_id=session_id,
                    intent=intent,
                    age_seconds=round(age, 1),
                    max_age=record.max_age,
                )
                return False

        return True

    async def mark_intent_fulfilled(
        self,
        session_id: str,
        intent: str,
        repeatable: bool = True,
        max_age: Optional[float] = None,
    ) -> MindStateStack:
        """Set fulfilled, bump completion_count, refresh last_used."""
        state = await self.get(session_id)
        now = self.clock()
        record = self._record(state, intent, repeatable, max_age, now)
        record.fulfilled = True
        record.completion_count += 1
        record.last_used = now

        log.info(
            "intent_fulfilled",
            session_id=session_id,
            intent=intent,
            completion_count=record.completion_count,
        )
        return await self._save(state)

    # ------------------------------------------------------------------
    # Flow mirror
    # ------------------------------------------------------------------

    async def update_current_flow(
        self, session_id: str, flow_id: str, step_id: str
    ) -> MindStateStack:
        state = await self.get(session_id)
        state.current_flow = flow_id
        state.current_flow_step = step_id
        return await self._save(state)

    async def clear_current_flow(
        self, session_id: str, flow_id: Optional[str] = None
    ) -> MindStateStack:
        """Clear the mirror; with ``flow_id``, only if it still points there."""
        state = await self.get(session_id)
        if flow_id is not None and state.current_flow != flow_id:
            return state
        state.current_flow = None
        state.current_flow_step = None
        return await self._save(state)

    async def update_flow_status(
        self, session_id: str, flow_id: str, status: FlowStatus
    ) -> MindStateStack:
        """Record a flow status change; terminal statuses clear the mirror."""
        state = await self.get(session_id)
        status = FlowStatus(status)
        state.flow_history.append(
            FlowHistoryEntry(flow_id=flow_id, status=status.value, timestamp=self.clock())
        )
        if status.is_terminal and state.current_flow == flow_id:
            state.current_flow = None
            state.current_flow_step = None

        log.info(
            "flow_status_recorded",
            session_id=session_id,
            flow_id=flow_id,
            status=status.value,
        )
        return await self._save(state)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def reset(self, session_id: str) -> MindStateStack:
        """Replace the session's memory with an empty state."""
        now = self.clock()
        state = MindStateStack(session_id=session_id, created_at=now, updated_at=now)
        self._cache[session_id] = state
        log.info("mind_state_reset", session_id=session_id)
        return await self._save(state)

    async def cleanup_expired(self, session_id: str) -> MindStateStack:
        """Drop stale stack items and records past their ``max_age``."""
        state = await self.get(session_id)
        now = self.clock()

        kept_items = [
            item
            for item in state.stack
            if (now - item.timestamp).total_seconds() < self.stack_retention_seconds
        ]
        expired_intents = [
            name
            for name, record in state.fulfilled_intents.items()
            if record.max_age is not None
            and (now - record.last_used).total_seconds() > record.max_age
        ]

        removed_items = len(state.stack) - len(kept_items)
        if not removed_items and not expired_intents:
            return state

        state.stack = kept_items
        for name in expired_intents:
            del state.fulfilled_intents[name]

        log.info(
            "mind_state_cleaned",
            session_id=session_id,
            removed_items=removed_items,
            expired_intents=expired_intents,
        )
        return await self._save(state)
