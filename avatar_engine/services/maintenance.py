"""
Periodic maintenance sweep.

The only background task in the engine. Every ``interval_seconds`` it:
- times out flows idle beyond the flow idle timeout,
- drops expired stack items / intent records from cached memory,
- evicts idle sessions from the in-process memory cache.

Each session is handled under its own lock so the sweep never interleaves
with a turn for that session.
"""

import asyncio
from typing import Optional

import structlog

from avatar_engine.core.config import settings
from avatar_engine.services.flow_engine import FlowEngine
from avatar_engine.services.memory_service import MemoryService
from avatar_engine.services.session_locks import SessionLockRegistry

log = structlog.get_logger(__name__)


class MaintenanceSweeper:
    """Runs flow and memory cleanup on a fixed period."""

    def __init__(
        self,
        flow_engine: FlowEngine,
        memory: MemoryService,
        locks: SessionLockRegistry,
        interval_seconds: Optional[float] = None,
        idle_seconds: Optional[float] = None,
    ):
        self.flow_engine = flow_engine
        self.memory = memory
        self.locks = locks
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.sweep_interval_seconds
        )
        self.idle_seconds = (
            idle_seconds if idle_seconds is not None else settings.flow_idle_timeout_seconds
        )
        self._task: Optional[asyncio.Task] = None

    async def sweep_once(self) -> dict:
        """Run one sweep and return counts for logging/tests."""
        flows_removed = 0
        for session_id in self.flow_engine.tracked_session_ids():
            async with self.locks.acquire(session_id):
                if await self.flow_engine.expire_if_idle(session_id):
                    flows_removed += 1

        sessions_evicted = 0
        for session_id in self.memory.cached_session_ids():
            async with self.locks.acquire(session_id):
                await self.memory.cleanup_expired(session_id)
                if self.memory.evict_if_idle(session_id, self.idle_seconds):
                    sessions_evicted += 1

        stats = {"flows_removed": flows_removed, "sessions_evicted": sessions_evicted}
        log.info("maintenance_sweep_completed", **stats)
        return stats

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception as e:
                # Keep sweeping; the failing session is retried next period
                log.error(
                    "maintenance_sweep_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="avatar-maintenance")
            log.info("maintenance_sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("maintenance_sweeper_stopped")
