"""Thread store adapter: retries, sticky fallback and per-thread write ordering."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from focusflow.errors import MessageNotFound, StoreUnavailable
from focusflow.logging import get_logger
from focusflow.models import Message
from focusflow.session import naming
from focusflow.session.backends import InMemoryThreadBackend, JsonlThreadBackend, ThreadBackend
from focusflow.session.locks import ThreadLocks

if TYPE_CHECKING:
    from focusflow.config.schema import Config

logger = get_logger(__name__)

T = TypeVar("T")


class StoreState(str, Enum):
    CREATED = "created"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"


@dataclass(frozen=True)
class ThreadSummary:
    id: str
    purpose_label: str


class ThreadStore:
    """
    Adapter over a durable backend with a volatile fallback.

    Lifecycle: construct -> ``await start()`` -> READY (primary healthy) or
    DEGRADED (primary unreachable). Each operation retries
    :class:`StoreUnavailable` with exponential backoff; once the retry budget
    is spent the store switches to the fallback backend for the rest of the
    session and never tries the primary again.
    """

    def __init__(
        self,
        primary: ThreadBackend,
        fallback: ThreadBackend | None = None,
        *,
        max_attempts: int = 3,
        backoff_base: float = 0.2,
        backoff_max: float = 2.0,
    ):
        self._primary = primary
        self._fallback = fallback or InMemoryThreadBackend()
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._state = StoreState.CREATED
        self._locks = ThreadLocks()

    @classmethod
    def from_config(cls, config: Config) -> ThreadStore:
        store_cfg = config.store
        if store_cfg.backend == "memory":
            primary: ThreadBackend = InMemoryThreadBackend()
        else:
            primary = JsonlThreadBackend(config.threads_path)
        return cls(
            primary,
            max_attempts=store_cfg.max_attempts,
            backoff_base=store_cfg.backoff_base,
            backoff_max=store_cfg.backoff_max,
        )

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def degraded(self) -> bool:
        return self._state is StoreState.DEGRADED

    @property
    def active_backend(self) -> ThreadBackend:
        return self._fallback if self.degraded else self._primary

    async def start(self) -> StoreState:
        """Ping the primary backend; leaves the store READY or DEGRADED."""
        if self._state is not StoreState.CREATED:
            return self._state
        try:
            await self._retrying("ping", None, lambda backend: backend.ping())
        except StoreUnavailable as e:
            self._engage_fallback("ping", None, e)
        else:
            self._state = StoreState.READY
            logger.info("thread_store_ready", backend=self._primary.name)
        return self._state

    async def close(self) -> None:
        if self._state is not StoreState.CLOSED:
            self._state = StoreState.CLOSED
            logger.debug("thread_store_closed")

    def _require_open(self) -> None:
        if self._state is StoreState.CREATED:
            raise RuntimeError("ThreadStore.start() must be awaited before use")
        if self._state is StoreState.CLOSED:
            raise RuntimeError("ThreadStore is closed")

    def _engage_fallback(self, op: str, thread_id: str | None, error: Exception) -> None:
        if self._state is StoreState.DEGRADED:
            return
        self._state = StoreState.DEGRADED
        logger.warning(
            "thread_store_fallback_engaged",
            op=op,
            thread_id=thread_id,
            primary=self._primary.name,
            fallback=self._fallback.name,
            attempts=self.max_attempts,
            error=str(error),
        )

    def _before_sleep(self, op: str, thread_id: str | None) -> Callable[[RetryCallState], None]:
        def _log(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "thread_store_retry",
                op=op,
                thread_id=thread_id,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                error=str(exc) if exc else None,
            )

        return _log

    async def _retrying(
        self,
        op: str,
        thread_id: str | None,
        work: Callable[[ThreadBackend], Awaitable[T]],
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            retry=retry_if_exception_type(StoreUnavailable),
            before_sleep=self._before_sleep(op, thread_id),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await work(self._primary)
        return result

    async def _run(
        self,
        op: str,
        thread_id: str | None,
        work: Callable[[ThreadBackend], Awaitable[T]],
    ) -> T:
        self._require_open()
        if self.degraded:
            return await work(self._fallback)
        try:
            return await self._retrying(op, thread_id, work)
        except StoreUnavailable as e:
            self._engage_fallback(op, thread_id, e)
            return await work(self._fallback)

    async def append(self, thread_id: str, message: Message, owner_id: str | None = None) -> Message:
        """Append *message* and register the thread under its owner; returns the stored message."""
        stored = message if message.id else replace(message, id=uuid.uuid4().hex)
        owner = owner_id or naming.parse(thread_id).owner_id
        if owner is None:
            logger.debug("thread_owner_unknown", thread_id=thread_id)

        async def _write() -> None:
            await self._run("append", thread_id, lambda backend: backend.append(thread_id, stored, owner))

        await self._locks.run_exclusive(thread_id, _write)
        return stored

    async def read_all(self, thread_id: str) -> list[Message]:
        """Return the thread's messages in append order; unknown threads are empty."""
        return await self._run("read_all", thread_id, lambda backend: backend.read_all(thread_id))

    async def update(self, thread_id: str, message_id: str, new_content: str) -> Message:
        edited_at = datetime.now()

        async def _write() -> Message | None:
            return await self._run(
                "update",
                thread_id,
                lambda backend: backend.update(thread_id, message_id, new_content, edited_at),
            )

        updated = await self._locks.run_exclusive(thread_id, _write)
        if updated is None:
            logger.warning("message_not_found", thread_id=thread_id, message_id=message_id)
            raise MessageNotFound(thread_id, message_id)
        return updated

    async def delete(self, thread_id: str, message_id: str) -> None:
        async def _write() -> None:
            await self._run("delete", thread_id, lambda backend: backend.delete(thread_id, message_id))

        await self._locks.run_exclusive(thread_id, _write)

    async def clear(self, thread_id: str) -> None:
        async def _write() -> None:
            await self._run("clear", thread_id, lambda backend: backend.clear(thread_id))

        await self._locks.run_exclusive(thread_id, _write)

    async def list_threads(self, owner_id: str) -> list[ThreadSummary]:
        thread_ids = await self._run("list_threads", None, lambda backend: backend.list_thread_ids(owner_id))
        return [ThreadSummary(id=tid, purpose_label=naming.label_for(tid)) for tid in thread_ids]
