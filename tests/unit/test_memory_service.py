"""Tests for MemoryService."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from avatar_engine.core.exceptions import PersistenceError
from avatar_engine.domain.models.flow import FlowStatus
from avatar_engine.services.memory_service import MemoryService


class TestLoadAndSave:
    """get() creates, caches and persists state."""

    @pytest.mark.asyncio
    async def test_get_creates_and_persists_empty_state(self, memory, mind_repo):
        state = await memory.get("s1")

        assert state.session_id == "s1"
        assert state.stack == []
        stored = await mind_repo.load("s1")
        assert stored is not None
        assert stored.session_id == "s1"

    @pytest.mark.asyncio
    async def test_get_returns_cached_instance(self, memory):
        first = await memory.get("s1")
        second = await memory.get("s1")
        assert first is second

    @pytest.mark.asyncio
    async def test_push_then_get_round_trips_through_store(self, memory, mind_repo, clock):
        await memory.push_intent("s1", "greeting", 0.9, {})

        fresh = MemoryService(mind_repo, clock=clock)
        state = await fresh.get("s1")

        assert state.stack[-1].intent == "greeting"
        assert state.stack[-1].confidence == 0.9

    @pytest.mark.asyncio
    async def test_persistence_failure_evicts_cache_and_propagates(self, clock):
        repo = MagicMock()
        repo.load = AsyncMock(return_value=None)
        repo.save = AsyncMock(side_effect=[None, PersistenceError("disk full")])
        service = MemoryService(repo, clock=clock)

        await service.get("s1")
        with pytest.raises(PersistenceError):
            await service.push_intent("s1", "greeting", 0.9)

        assert service.cached_session_ids() == []

    @pytest.mark.asyncio
    async def test_evict_if_idle(self, memory, clock):
        await memory.get("s1")

        assert memory.evict_if_idle("s1", 60) is False
        clock.advance(61)
        assert memory.evict_if_idle("s1", 60) is True
        assert "s1" not in memory.cached_session_ids()
        assert memory.evict_if_idle("unknown", 60) is False


class TestStack:
    """push/pop/history."""

    @pytest.mark.asyncio
    async def test_push_records_metadata_and_touches_record(self, memory):
        state = await memory.push_intent(
            "s1", "pricing_question", 0.8, {"user_message": "price?"}
        )

        item = state.stack[-1]
        assert item.tag == "pricing_question"
        assert item.metadata == {"user_message": "price?"}
        record = state.fulfilled_intents["pricing_question"]
        assert record.fulfilled is False
        assert record.completion_count == 0

    @pytest.mark.asyncio
    async def test_history_is_newest_first_and_limited(self, memory, clock):
        for name in ("a", "b", "c"):
            await memory.push_intent("s1", name, 0.5)
            clock.advance(1)

        history = await memory.get_intent_history("s1", limit=2)

        assert [item.intent for item in history] == ["c", "b"]

    @pytest.mark.asyncio
    async def test_pop_intent(self, memory):
        await memory.push_intent("s1", "a", 0.5)
        await memory.push_intent("s1", "b", 0.5)

        popped = await memory.pop_intent("s1")

        assert popped.intent == "b"
        assert [i.intent for i in (await memory.get("s1")).stack] == ["a"]
        await memory.pop_intent("s1")
        assert await memory.pop_intent("s1") is None

    @pytest.mark.asyncio
    async def test_continuation_window(self, memory, clock):
        await memory.push_intent("s1", "A", 0.9)

        clock.advance(5)
        assert await memory.is_intent_continuation("s1", "A") is True
        assert await memory.is_intent_continuation("s1", "B") is False

        clock.advance(35)
        assert await memory.is_intent_continuation("s1", "A") is False

    @pytest.mark.asyncio
    async def test_zero_window_disables_continuation(self, mind_repo, clock):
        service = MemoryService(mind_repo, clock=clock, continuation_window_seconds=0)
        await service.push_intent("s1", "A", 0.9)

        assert service.continuation_window_seconds == 0
        assert await service.is_intent_continuation("s1", "A") is False


class TestFulfillment:
    """Repeatability and cooldown gating."""

    @pytest.mark.asyncio
    async def test_unknown_intent_can_execute(self, memory):
        assert await memory.can_execute_intent("s1", "anything") is True

    @pytest.mark.asyncio
    async def test_mark_fulfilled_twice_counts_twice(self, memory):
        await memory.mark_intent_fulfilled("s1", "x")
        state = await memory.mark_intent_fulfilled("s1", "x")

        record = state.fulfilled_intents["x"]
        assert record.fulfilled is True
        assert record.completion_count == 2

    @pytest.mark.asyncio
    async def test_non_repeatable_blocked_after_fulfillment(self, memory):
        await memory.push_intent("s1", "greeting", 0.9, repeatable=False)
        assert await memory.can_execute_intent("s1", "greeting") is True

        await memory.mark_intent_fulfilled("s1", "greeting", repeatable=False)

        assert await memory.can_execute_intent("s1", "greeting") is False

    @pytest.mark.asyncio
    async def test_repeatable_allowed_after_fulfillment(self, memory):
        await memory.mark_intent_fulfilled("s1", "pricing_question", repeatable=True)
        assert await memory.can_execute_intent("s1", "pricing_question") is True

    @pytest.mark.asyncio
    async def test_max_age_cooldown(self, memory, clock):
        await memory.mark_intent_fulfilled("s1", "discount_offer", max_age=60)

        clock.advance(10)
        assert await memory.can_execute_intent("s1", "discount_offer") is False

        clock.advance(51)
        assert await memory.can_execute_intent("s1", "discount_offer") is True

    @pytest.mark.asyncio
    async def test_record_settings_fixed_at_creation(self, memory):
        await memory.push_intent("s1", "greeting", 0.9, repeatable=False)
        state = await memory.mark_intent_fulfilled("s1", "greeting", repeatable=True)

        assert state.fulfilled_intents["greeting"].repeatable is False


class TestFlowMirror:
    """Current-flow mirror and flow history."""

    @pytest.mark.asyncio
    async def test_update_and_clear_current_flow(self, memory):
        await memory.update_current_flow("s1", "f1", "s1")
        state = await memory.get("s1")
        assert (state.current_flow, state.current_flow_step) == ("f1", "s1")

        await memory.clear_current_flow("s1", flow_id="other")
        assert state.current_flow == "f1"

        await memory.clear_current_flow("s1", flow_id="f1")
        assert state.current_flow is None
        assert state.current_flow_step is None

    @pytest.mark.asyncio
    async def test_terminal_status_clears_mirror_and_records_history(self, memory):
        await memory.update_current_flow("s1", "f1", "s2")

        state = await memory.update_flow_status("s1", "f1", FlowStatus.COMPLETED)

        assert state.current_flow is None
        assert state.flow_history[-1].flow_id == "f1"
        assert state.flow_history[-1].status == "completed"

    @pytest.mark.asyncio
    async def test_status_for_other_flow_keeps_mirror(self, memory):
        await memory.update_current_flow("s1", "f2", "a")

        state = await memory.update_flow_status("s1", "f1", FlowStatus.CANCELLED)

        assert state.current_flow == "f2"
        assert state.flow_history[-1].status == "cancelled"


class TestMaintenance:
    """reset and cleanup_expired."""

    @pytest.mark.asyncio
    async def test_reset(self, memory, mind_repo):
        await memory.push_intent("s1", "greeting", 0.9)
        await memory.mark_intent_fulfilled("s1", "greeting")

        state = await memory.reset("s1")

        assert state.stack == []
        assert state.fulfilled_intents == {}
        stored = await mind_repo.load("s1")
        assert stored.stack == []

    @pytest.mark.asyncio
    async def test_cleanup_drops_old_items_and_expired_records(self, memory, clock):
        await memory.push_intent("s1", "old", 0.5)
        await memory.mark_intent_fulfilled("s1", "discount_offer", max_age=60)
        clock.advance(3600)
        await memory.push_intent("s1", "new", 0.5)

        state = await memory.cleanup_expired("s1")

        assert [item.intent for item in state.stack] == ["new"]
        assert "discount_offer" not in state.fulfilled_intents
        assert "new" in state.fulfilled_intents

    @pytest.mark.asyncio
    async def test_cleanup_without_changes_does_not_save(self, clock):
        repo = MagicMock()
        repo.load = AsyncMock(return_value=None)
        repo.save = AsyncMock()
        service = MemoryService(repo, clock=clock, stack_retention_seconds=3600)
        await service.get("s1")

        await service.cleanup_expired("s1")

        assert repo.save.await_count == 1
