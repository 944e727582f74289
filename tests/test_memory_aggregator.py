"""Tests for cross-thread memory aggregation."""

from datetime import datetime, timedelta

import pytest

from focusflow.agent.aggregator import MemoryAggregator, conversation_order, recent_window
from focusflow.errors import StoreUnavailable, ThreadCorrupted
from focusflow.models import ASSISTANT, USER, Message
from focusflow.session.backends import InMemoryThreadBackend
from focusflow.session.store import ThreadStore

T0 = datetime(2024, 5, 1, 9, 0, 0)


def _msg(sender: str, content: str, minutes: int = 0) -> Message:
    return Message(sender=sender, content=content, timestamp=T0 + timedelta(minutes=minutes))


class BrokenThreadBackend(InMemoryThreadBackend):
    """Fails every read of the listed threads."""

    def __init__(self, broken: set[str]) -> None:
        super().__init__()
        self.broken = broken

    async def read_all(self, thread_id):
        if thread_id in self.broken:
            raise ThreadCorrupted(thread_id, "unreadable")
        return await super().read_all(thread_id)


async def _store(backend=None) -> ThreadStore:
    store = ThreadStore(backend or InMemoryThreadBackend(), backoff_base=0)
    await store.start()
    return store


@pytest.mark.asyncio
async def test_returns_exactly_the_threads_with_messages() -> None:
    store = await _store()
    await store.append("user_u1_coach", _msg(USER, "hi", 0))
    await store.append("user_u1_task_1", _msg(USER, "start", 1))
    await store.append("user_u1_task_2", _msg(USER, "later", 2))
    await store.append("user_u2_coach", _msg(USER, "someone else", 3))

    result = await MemoryAggregator(store).aggregate_all("u1")

    assert set(result) == {"user_u1_coach", "user_u1_task_1", "user_u1_task_2"}
    assert [m.content for m in result["user_u1_task_1"]] == ["start"]


@pytest.mark.asyncio
async def test_one_unreadable_thread_does_not_hide_the_others() -> None:
    backend = BrokenThreadBackend({"user_u1_task_3"})
    store = await _store(backend)
    for i in range(1, 5):
        await store.append(f"user_u1_task_{i}", _msg(USER, f"task {i}", i))

    result = await MemoryAggregator(store).aggregate_all("u1")

    assert set(result) == {"user_u1_task_1", "user_u1_task_2", "user_u1_task_4"}
    assert not store.degraded


@pytest.mark.asyncio
async def test_emptied_threads_are_skipped() -> None:
    store = await _store()
    await store.append("user_u1_coach", _msg(USER, "hi"))
    await store.append("user_u1_task_1", _msg(USER, "x"))
    await store.clear("user_u1_task_1")

    result = await MemoryAggregator(store).aggregate_all("u1")
    assert list(result) == ["user_u1_coach"]


@pytest.mark.asyncio
async def test_legacy_id_with_literal_percent_in_owner_is_kept() -> None:
    store = await _store()
    await store.append("user_a%20b_coach", _msg(USER, "legacy"), owner_id="a%20b")

    result = await MemoryAggregator(store).aggregate_all("a%20b")
    assert [m.content for m in result["user_a%20b_coach"]] == ["legacy"]


@pytest.mark.asyncio
async def test_owner_without_threads_gets_empty_map() -> None:
    store = await _store()
    assert await MemoryAggregator(store).aggregate_all("nobody") == {}


@pytest.mark.asyncio
async def test_threads_indexed_under_another_owner_are_ignored() -> None:
    store = await _store()
    await store.append("user_u2_coach", _msg(USER, "not yours"), owner_id="u1")
    await store.append("user_u1_coach", _msg(USER, "yours"))

    result = await MemoryAggregator(store).aggregate_all("u1")
    assert list(result) == ["user_u1_coach"]


@pytest.mark.asyncio
async def test_listing_failure_yields_empty_map() -> None:
    class NoListing(InMemoryThreadBackend):
        async def list_thread_ids(self, owner_id):
            raise RuntimeError("index gone")

    store = await _store(NoListing())
    await store.append("user_u1_coach", _msg(USER, "hi"))
    assert await MemoryAggregator(store).aggregate_all("u1") == {}


@pytest.mark.asyncio
async def test_result_is_ordered_by_first_message_time() -> None:
    store = await _store()
    await store.append("user_u1_task_b", _msg(USER, "second", 10))
    await store.append("user_u1_coach", _msg(USER, "third", 20))
    await store.append("user_u1_task_a", _msg(USER, "first", 0))

    result = await MemoryAggregator(store).aggregate_all("u1")
    assert list(result) == ["user_u1_task_a", "user_u1_task_b", "user_u1_coach"]


@pytest.mark.asyncio
async def test_aggregation_reads_from_fallback_after_outage() -> None:
    class DownAfterStart(InMemoryThreadBackend):
        async def list_thread_ids(self, owner_id):
            raise StoreUnavailable("gone")

    store = await _store(DownAfterStart())
    result = await MemoryAggregator(store).aggregate_all("u1")
    assert result == {}
    assert store.degraded

    await store.append("user_u1_coach", _msg(USER, "kept in memory"))
    result = await MemoryAggregator(store).aggregate_all("u1")
    assert [m.content for m in result["user_u1_coach"]] == ["kept in memory"]


def test_conversation_order_breaks_ties_by_thread_id() -> None:
    convs = {
        "user_u1_task_2": [_msg(USER, "a", 0)],
        "user_u1_task_1": [_msg(USER, "b", 0)],
        "user_u1_coach": [],
    }
    assert conversation_order(convs) == ["user_u1_task_1", "user_u1_task_2"]


def test_conversation_order_handles_mixed_timezones() -> None:
    aware = datetime(2024, 5, 1, 9, 0, 0).astimezone()
    convs = {
        "user_u1_task_1": [Message(USER, "aware", timestamp=aware + timedelta(minutes=5))],
        "user_u1_task_2": [Message(USER, "naive", timestamp=datetime(2024, 5, 1, 9, 0, 0))],
    }
    assert conversation_order(convs) == ["user_u1_task_2", "user_u1_task_1"]


def test_recent_window_keeps_last_messages_in_order() -> None:
    messages = [_msg(ASSISTANT if i % 2 else USER, f"m{i}", i) for i in range(15)]
    assert [m.content for m in recent_window(messages, 10)] == [f"m{i}" for i in range(5, 15)]
    assert recent_window(messages, 0) == []
    assert len(recent_window(messages[:3], 10)) == 3
