"""Tests for the thread store adapter: retries, sticky fallback, lifecycle."""

import asyncio

import pytest

from focusflow.errors import MessageNotFound, StoreUnavailable, ThreadCorrupted
from focusflow.models import ASSISTANT, USER, Message
from focusflow.session.backends import InMemoryThreadBackend
from focusflow.session.store import StoreState, ThreadStore


class FlakyBackend(InMemoryThreadBackend):
    """In-memory backend that raises StoreUnavailable for selected operations."""

    name = "flaky"

    def __init__(self, failures: dict[str, int] | None = None, always: bool = False) -> None:
        super().__init__()
        self.failures = dict(failures or {})
        self.always = always
        self.calls: dict[str, int] = {}

    def _maybe_fail(self, op: str) -> None:
        self.calls[op] = self.calls.get(op, 0) + 1
        if self.always:
            raise StoreUnavailable(f"{op}: backend down")
        remaining = self.failures.get(op, 0)
        if remaining > 0:
            self.failures[op] = remaining - 1
            raise StoreUnavailable(f"{op}: transient")

    async def ping(self) -> None:
        self._maybe_fail("ping")

    async def append(self, thread_id, message, owner_id):
        self._maybe_fail("append")
        await super().append(thread_id, message, owner_id)

    async def read_all(self, thread_id):
        self._maybe_fail("read_all")
        return await super().read_all(thread_id)

    async def list_thread_ids(self, owner_id):
        self._maybe_fail("list_thread_ids")
        return await super().list_thread_ids(owner_id)


async def _started(primary, fallback=None, max_attempts=3) -> ThreadStore:
    store = ThreadStore(primary, fallback, max_attempts=max_attempts, backoff_base=0)
    await store.start()
    return store


def _msg(sender: str, content: str) -> Message:
    return Message(sender=sender, content=content)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_operations_before_start_raise(self) -> None:
        store = ThreadStore(InMemoryThreadBackend())
        assert store.state is StoreState.CREATED
        with pytest.raises(RuntimeError):
            await store.read_all("user_1_coach")

    @pytest.mark.asyncio
    async def test_healthy_primary_is_ready(self) -> None:
        store = await _started(InMemoryThreadBackend())
        assert store.state is StoreState.READY
        assert not store.degraded

    @pytest.mark.asyncio
    async def test_unreachable_primary_starts_degraded(self) -> None:
        primary = FlakyBackend(always=True)
        store = await _started(primary)
        assert store.state is StoreState.DEGRADED
        assert primary.calls["ping"] == 3
        assert store.active_backend.name == "memory"

    @pytest.mark.asyncio
    async def test_transient_ping_failure_recovers(self) -> None:
        store = await _started(FlakyBackend({"ping": 2}))
        assert store.state is StoreState.READY

    @pytest.mark.asyncio
    async def test_closed_store_rejects_operations(self) -> None:
        store = await _started(InMemoryThreadBackend())
        await store.close()
        assert store.state is StoreState.CLOSED
        with pytest.raises(RuntimeError):
            await store.append("user_1_coach", _msg(USER, "hi"))


class TestAppendAndRead:
    @pytest.mark.asyncio
    async def test_append_assigns_ids_and_preserves_order(self) -> None:
        store = await _started(InMemoryThreadBackend())
        tid = "user_1_coach"
        stored = [await store.append(tid, _msg(USER, f"m{i}")) for i in range(5)]
        assert all(m.id for m in stored)
        assert len({m.id for m in stored}) == 5
        assert [m.content for m in await store.read_all(tid)] == [f"m{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_unknown_thread_reads_empty(self) -> None:
        store = await _started(InMemoryThreadBackend())
        assert await store.read_all("user_1_task_404") == []

    @pytest.mark.asyncio
    async def test_reads_only_ever_extend(self) -> None:
        store = await _started(InMemoryThreadBackend())
        tid = "user_1_task_3"
        snapshots: list[list[str]] = []

        async def writer(prefix: str) -> None:
            for i in range(10):
                await store.append(tid, _msg(USER, f"{prefix}{i}"))
                await asyncio.sleep(0)

        async def reader() -> None:
            for _ in range(25):
                snapshots.append([m.id for m in await store.read_all(tid)])
                await asyncio.sleep(0)

        await asyncio.gather(writer("a"), writer("b"), reader())
        snapshots.append([m.id for m in await store.read_all(tid)])

        for earlier, later in zip(snapshots, snapshots[1:]):
            assert later[: len(earlier)] == earlier
        assert len(snapshots[-1]) == 20

    @pytest.mark.asyncio
    async def test_owner_is_derived_from_thread_id(self) -> None:
        store = await _started(InMemoryThreadBackend())
        await store.append("user_7_coach", _msg(USER, "hello"))
        await store.append("user_7_task_1", _msg(USER, "hello"), owner_id="7")
        summaries = await store.list_threads("7")
        assert [(s.id, s.purpose_label) for s in summaries] == [
            ("user_7_coach", "Life Coach"),
            ("user_7_task_1", "Task 1"),
        ]

    @pytest.mark.asyncio
    async def test_owner_index_is_idempotent(self) -> None:
        store = await _started(InMemoryThreadBackend())
        for _ in range(3):
            await store.append("user_7_coach", _msg(USER, "again"))
        assert [s.id for s in await store.list_threads("7")] == ["user_7_coach"]


class TestEditing:
    @pytest.mark.asyncio
    async def test_update_replaces_content_and_stamps_edit(self) -> None:
        store = await _started(InMemoryThreadBackend())
        tid = "user_1_coach"
        original = await store.append(tid, _msg(ASSISTANT, "old advice"))
        updated = await store.update(tid, original.id, "new advice")
        assert updated.content == "new advice"
        assert updated.edited_at is not None
        assert updated.id == original.id
        assert [m.content for m in await store.read_all(tid)] == ["new advice"]

    @pytest.mark.asyncio
    async def test_update_missing_message_raises_not_found(self) -> None:
        store = await _started(InMemoryThreadBackend())
        await store.append("user_1_coach", _msg(USER, "hi"))
        with pytest.raises(MessageNotFound) as exc:
            await store.update("user_1_coach", "nope", "text")
        assert exc.value.message_id == "nope"

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self) -> None:
        store = await _started(InMemoryThreadBackend())
        tid = "user_1_coach"
        keep = await store.append(tid, _msg(USER, "keep"))
        drop = await store.append(tid, _msg(USER, "drop"))
        await store.delete(tid, drop.id)
        await store.delete(tid, drop.id)
        assert [m.id for m in await store.read_all(tid)] == [keep.id]

    @pytest.mark.asyncio
    async def test_clear_empties_thread(self) -> None:
        store = await _started(InMemoryThreadBackend())
        tid = "user_1_coach"
        await store.append(tid, _msg(USER, "a"))
        await store.clear(tid)
        assert await store.read_all(tid) == []


class TestRetryAndFallback:
    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_on_primary(self) -> None:
        primary = FlakyBackend({"append": 2})
        store = await _started(primary)
        await store.append("user_1_coach", _msg(USER, "hi"))
        assert primary.calls["append"] == 3
        assert store.state is StoreState.READY
        assert [m.content for m in await store.read_all("user_1_coach")] == ["hi"]

    @pytest.mark.asyncio
    async def test_three_failed_reads_switch_to_fallback(self) -> None:
        primary = FlakyBackend({"read_all": 3})
        fallback = InMemoryThreadBackend()
        store = await _started(primary, fallback)

        assert await store.read_all("user_1_coach") == []
        assert store.degraded
        assert primary.calls["read_all"] == 3

        await store.append("user_1_coach", _msg(USER, "after outage"))
        assert [m.content for m in await store.read_all("user_1_coach")] == ["after outage"]
        assert [m.content for m in await fallback.read_all("user_1_coach")] == ["after outage"]

    @pytest.mark.asyncio
    async def test_fallback_is_sticky(self) -> None:
        primary = FlakyBackend({"read_all": 3})
        store = await _started(primary)
        await store.read_all("user_1_coach")
        calls_at_switch = dict(primary.calls)

        await store.append("user_1_coach", _msg(USER, "x"))
        await store.read_all("user_1_coach")
        await store.list_threads("1")

        assert primary.calls == calls_at_switch
        assert store.degraded

    @pytest.mark.asyncio
    async def test_corrupted_thread_is_not_retried_and_does_not_degrade(self) -> None:
        class CorruptBackend(InMemoryThreadBackend):
            reads = 0

            async def read_all(self, thread_id):
                CorruptBackend.reads += 1
                raise ThreadCorrupted(thread_id, "bad line")

        store = await _started(CorruptBackend())
        with pytest.raises(ThreadCorrupted):
            await store.read_all("user_1_coach")
        assert CorruptBackend.reads == 1
        assert store.state is StoreState.READY
