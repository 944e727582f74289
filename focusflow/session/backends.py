"""Thread storage backends.

A backend maps thread ids to ordered message lists and keeps an owner index
(owner id -> thread ids) that is updated in the same call as every append.
Backends raise :class:`StoreUnavailable` for transient outages and
:class:`ThreadCorrupted` when one thread's data cannot be decoded; retry and
fallback policy lives in :mod:`focusflow.session.store`.
"""

from __future__ import annotations

import asyncio
import json
import os
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Protocol
from urllib.parse import quote

from focusflow.errors import StoreUnavailable, ThreadCorrupted
from focusflow.logging import get_logger
from focusflow.models import Message, parse_datetime
from focusflow.session import naming
from focusflow.utils.helpers import append_text, atomic_write_text, ends_with_newline, ensure_dir

logger = get_logger(__name__)


class ThreadBackend(Protocol):
    name: str

    async def ping(self) -> None: ...
    async def append(self, thread_id: str, message: Message, owner_id: str | None) -> None: ...
    async def read_all(self, thread_id: str) -> list[Message]: ...
    async def update(self, thread_id: str, message_id: str, content: str, edited_at: datetime) -> Message | None: ...
    async def delete(self, thread_id: str, message_id: str) -> None: ...
    async def clear(self, thread_id: str) -> None: ...
    async def list_thread_ids(self, owner_id: str) -> list[str]: ...


class InMemoryThreadBackend:
    """Volatile backend; contents live only as long as the process."""

    name = "memory"

    def __init__(self) -> None:
        self._threads: dict[str, list[Message]] = {}
        self._owners: dict[str, dict[str, None]] = {}

    async def ping(self) -> None:
        return None

    async def append(self, thread_id: str, message: Message, owner_id: str | None) -> None:
        self._threads.setdefault(thread_id, []).append(message)
        if owner_id:
            self._owners.setdefault(owner_id, {})[thread_id] = None

    async def read_all(self, thread_id: str) -> list[Message]:
        return list(self._threads.get(thread_id, []))

    async def update(self, thread_id: str, message_id: str, content: str, edited_at: datetime) -> Message | None:
        messages = self._threads.get(thread_id, [])
        for i, msg in enumerate(messages):
            if msg.id == message_id:
                messages[i] = replace(msg, content=content, edited_at=edited_at)
                return messages[i]
        return None

    async def delete(self, thread_id: str, message_id: str) -> None:
        if thread_id in self._threads:
            self._threads[thread_id] = [m for m in self._threads[thread_id] if m.id != message_id]

    async def clear(self, thread_id: str) -> None:
        if thread_id in self._threads:
            self._threads[thread_id] = []

    async def list_thread_ids(self, owner_id: str) -> list[str]:
        return list(self._owners.get(owner_id, {}))


@contextmanager
def _io_errors(op: str, thread_id: str | None = None) -> Iterator[None]:
    try:
        yield
    except OSError as e:
        raise StoreUnavailable(f"{op} failed for {thread_id or 'store'}: {e}") from e


class JsonlThreadBackend:
    """
    Durable backend: one JSONL file per thread plus an ``index.json`` owner index.

    The first line of each thread file is a metadata record carrying the thread
    id and owner id, so the owner index can be rebuilt by scanning the directory
    when ``index.json`` is missing or unreadable. File I/O runs in worker
    threads via ``asyncio.to_thread``; the owner index is guarded by a
    ``threading.Lock`` because appends to different threads may run at once.
    """

    name = "jsonl"
    INDEX_FILE = "index.json"

    def __init__(self, directory: Path):
        self.directory = directory
        self._index: dict[str, list[str]] | None = None
        self._index_lock = threading.Lock()

    def _thread_path(self, thread_id: str) -> Path:
        return self.directory / f"{quote(thread_id, safe='')}.jsonl"

    @property
    def index_path(self) -> Path:
        return self.directory / self.INDEX_FILE

    async def ping(self) -> None:
        await asyncio.to_thread(self._ping)

    def _ping(self) -> None:
        with _io_errors("ping"):
            ensure_dir(self.directory)
            if not os.access(self.directory, os.W_OK):
                raise PermissionError(f"{self.directory} is not writable")

    def _read_thread(self, thread_id: str) -> tuple[dict[str, Any] | None, list[Message]]:
        path = self._thread_path(thread_id)
        if not path.exists():
            return None, []
        with _io_errors("read", thread_id):
            text = path.read_text(encoding="utf-8")

        lines = [line.strip() for line in text.splitlines()]
        lines = [line for line in lines if line]
        # An append cut short leaves a final line without its newline.
        torn_tail = bool(lines) and not text.endswith("\n")

        meta: dict[str, Any] | None = None
        created_at: datetime | None = None
        messages: list[Message] = []
        for n, line in enumerate(lines, start=1):
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                if torn_tail and n == len(lines):
                    logger.warning("thread_torn_line_skipped", thread_id=thread_id)
                    break
                raise ThreadCorrupted(thread_id, str(e)) from e
            if not isinstance(data, dict):
                raise ThreadCorrupted(thread_id, "record is not an object")
            if data.get("_type") == "metadata":
                meta = data
                created_at = parse_datetime(data.get("created_at"))
            else:
                messages.append(Message.from_dict(data, default_timestamp=created_at))
        return meta, messages

    @staticmethod
    def _metadata_line(thread_id: str, owner_id: str | None, created_at: str | None = None) -> str:
        record = {
            "_type": "metadata",
            "thread_id": thread_id,
            "owner_id": owner_id,
            "created_at": created_at or datetime.now().isoformat(),
        }
        return json.dumps(record, ensure_ascii=False) + "\n"

    @staticmethod
    def _message_line(message: Message) -> str:
        return json.dumps(message.to_dict(), ensure_ascii=False) + "\n"

    def _write_thread(self, thread_id: str, meta: dict[str, Any] | None, messages: list[Message]) -> None:
        owner_id = (meta or {}).get("owner_id")
        created_at = (meta or {}).get("created_at")
        lines = [self._metadata_line(thread_id, owner_id, created_at)]
        lines.extend(self._message_line(m) for m in messages)
        with _io_errors("write", thread_id):
            atomic_write_text(self._thread_path(thread_id), "".join(lines))

    async def append(self, thread_id: str, message: Message, owner_id: str | None) -> None:
        await asyncio.to_thread(self._append, thread_id, message, owner_id)

    def _append(self, thread_id: str, message: Message, owner_id: str | None) -> None:
        # Index first: a retried append then never writes the message twice.
        if owner_id:
            self._register(owner_id, thread_id)
        path = self._thread_path(thread_id)
        with _io_errors("append", thread_id):
            ensure_dir(self.directory)
            if not path.exists():
                atomic_write_text(path, self._metadata_line(thread_id, owner_id) + self._message_line(message))
                return
            clean = ends_with_newline(path)
        if not clean:
            meta, messages = self._read_thread(thread_id)
            self._write_thread(thread_id, meta, messages + [message])
            return
        with _io_errors("append", thread_id):
            append_text(path, self._message_line(message))

    async def read_all(self, thread_id: str) -> list[Message]:
        _, messages = await asyncio.to_thread(self._read_thread, thread_id)
        return messages

    async def update(self, thread_id: str, message_id: str, content: str, edited_at: datetime) -> Message | None:
        return await asyncio.to_thread(self._update, thread_id, message_id, content, edited_at)

    def _update(self, thread_id: str, message_id: str, content: str, edited_at: datetime) -> Message | None:
        meta, messages = self._read_thread(thread_id)
        for i, msg in enumerate(messages):
            if msg.id == message_id:
                messages[i] = replace(msg, content=content, edited_at=edited_at)
                self._write_thread(thread_id, meta, messages)
                return messages[i]
        return None

    async def delete(self, thread_id: str, message_id: str) -> None:
        await asyncio.to_thread(self._delete, thread_id, message_id)

    def _delete(self, thread_id: str, message_id: str) -> None:
        meta, messages = self._read_thread(thread_id)
        kept = [m for m in messages if m.id != message_id]
        if len(kept) != len(messages):
            self._write_thread(thread_id, meta, kept)

    async def clear(self, thread_id: str) -> None:
        await asyncio.to_thread(self._clear, thread_id)

    def _clear(self, thread_id: str) -> None:
        if not self._thread_path(thread_id).exists():
            return
        meta, _ = self._read_thread(thread_id)
        self._write_thread(thread_id, meta, [])

    async def list_thread_ids(self, owner_id: str) -> list[str]:
        return await asyncio.to_thread(self._list_thread_ids, owner_id)

    def _list_thread_ids(self, owner_id: str) -> list[str]:
        with self._index_lock:
            return list(self._get_index().get(owner_id, []))

    def _get_index(self) -> dict[str, list[str]]:
        if self._index is None:
            self._index = self._load_index()
            if self._index is None:
                self._index = self._scan_index()
                self._save_index()
        return self._index

    def _load_index(self) -> dict[str, list[str]] | None:
        path = self.index_path
        if not path.exists():
            return None
        try:
            with _io_errors("read index"):
                data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning("thread_index_unreadable", path=str(path), error=str(e))
            return None
        if not isinstance(data, dict):
            logger.warning("thread_index_unreadable", path=str(path), error="not an object")
            return None
        return {str(owner): [str(t) for t in ids] for owner, ids in data.items() if isinstance(ids, list)}

    def _scan_index(self) -> dict[str, list[str]]:
        """Rebuild the owner index from thread metadata lines."""
        index: dict[str, list[str]] = {}
        if not self.directory.exists():
            return index
        with _io_errors("scan"):
            paths = sorted(self.directory.glob("*.jsonl"))
        for path in paths:
            try:
                with open(path, encoding="utf-8") as f:
                    first_line = f.readline().strip()
                meta = json.loads(first_line) if first_line else {}
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("thread_scan_skipped", path=str(path), error=str(e))
                continue
            if not isinstance(meta, dict) or meta.get("_type") != "metadata" or not meta.get("thread_id"):
                continue
            thread_id = str(meta["thread_id"])
            owner_id = meta.get("owner_id") or naming.parse(thread_id).owner_id
            if not owner_id:
                continue
            ids = index.setdefault(str(owner_id), [])
            if thread_id not in ids:
                ids.append(thread_id)
        logger.info("thread_index_rebuilt", owners=len(index), threads=sum(len(v) for v in index.values()))
        return index

    def _save_index(self) -> None:
        with _io_errors("write index"):
            atomic_write_text(
                self.index_path,
                json.dumps(self._index or {}, ensure_ascii=False, indent=2, sort_keys=True),
            )

    def _register(self, owner_id: str, thread_id: str) -> None:
        with self._index_lock:
            index = self._get_index()
            ids = index.setdefault(owner_id, [])
            if thread_id in ids:
                return
            ids.append(thread_id)
            try:
                self._save_index()
            except StoreUnavailable:
                ids.remove(thread_id)
                raise
