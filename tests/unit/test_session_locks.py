"""Tests for SessionLockRegistry."""

import asyncio

import pytest

from avatar_engine.services.session_locks import SessionLockRegistry


@pytest.mark.asyncio
async def test_same_session_is_serialized():
    locks = SessionLockRegistry()
    events = []

    async def turn(name: str):
        async with locks.acquire("s1"):
            events.append(f"{name}-start")
            await asyncio.sleep(0.01)
            events.append(f"{name}-end")

    await asyncio.gather(turn("a"), turn("b"))

    assert events == ["a-start", "a-end", "b-start", "b-end"]


@pytest.mark.asyncio
async def test_different_sessions_do_not_wait():
    locks = SessionLockRegistry()
    release = asyncio.Event()
    entered = []

    async def hold():
        async with locks.acquire("s1"):
            await release.wait()

    holder = asyncio.create_task(hold())
    await asyncio.sleep(0)
    assert locks.is_locked("s1")

    async with locks.acquire("s2"):
        entered.append("s2")

    release.set()
    await holder
    assert entered == ["s2"]


@pytest.mark.asyncio
async def test_entries_dropped_when_unused():
    locks = SessionLockRegistry()

    async with locks.acquire("s1"):
        assert len(locks) == 1

    assert len(locks) == 0
    assert not locks.is_locked("s1")


@pytest.mark.asyncio
async def test_lock_released_on_error():
    locks = SessionLockRegistry()

    with pytest.raises(RuntimeError):
        async with locks.acquire("s1"):
            raise RuntimeError("boom")

    assert len(locks) == 0
