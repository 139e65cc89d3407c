"""
Per-session mutual exclusion.

Handling one message touches memory and flow state across several
suspension points. The registry hands out one asyncio.Lock per session id
so turns for the same session run one at a time, while different
sessions never wait on each other. Locks are dropped once no task holds
or awaits them.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict

import structlog

log = structlog.get_logger(__name__)


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionLockRegistry:
    """Reference-counted asyncio locks keyed by session id."""

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def acquire(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session's lock for the duration of the block."""
        entry = self._entries.get(session_id)
        if entry is None:
            entry = self._entries[session_id] = _Entry()
        entry.users += 1
        try:
            if entry.lock.locked():
                log.debug("session_lock_wait", session_id=session_id)
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(session_id) is entry:
                del self._entries[session_id]

    def is_locked(self, session_id: str) -> bool:
        entry = self._entries.get(session_id)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)
