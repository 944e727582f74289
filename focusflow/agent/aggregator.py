"""Cross-thread memory aggregation."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Sequence

from focusflow.logging import get_logger
from focusflow.models import Message
from focusflow.session import naming
from focusflow.session.store import ThreadStore

logger = get_logger(__name__)

DEFAULT_HISTORY_WINDOW = 10


def recent_window(messages: Sequence[Message], limit: int = DEFAULT_HISTORY_WINDOW) -> list[Message]:
    """Return the last *limit* messages, oldest first."""
    if limit <= 0:
        return []
    return list(messages[-limit:])


def local_timestamp(ts: datetime) -> datetime:
    # Legacy records may carry an offset; compare everything as local wall time.
    return ts.astimezone().replace(tzinfo=None) if ts.tzinfo else ts


def conversation_order(conversations: dict[str, list[Message]]) -> list[str]:
    """Stable thread order: first-message timestamp, then thread id."""
    return sorted(
        (tid for tid, msgs in conversations.items() if msgs),
        key=lambda tid: (local_timestamp(conversations[tid][0].timestamp), tid),
    )


class MemoryAggregator:
    """
    Collects every thread an owner has written to into one view.

    Recall is best-effort: a thread whose read fails is logged and left out,
    and the remaining threads are still returned.
    """

    def __init__(self, store: ThreadStore):
        self.store = store

    async def _fetch(self, owner_id: str, thread_id: str) -> list[Message] | None:
        if not naming.owned_by(thread_id, owner_id):
            logger.warning("thread_owner_mismatch", owner_id=owner_id, thread_id=thread_id)
            return None
        try:
            return await self.store.read_all(thread_id)
        except Exception:
            logger.exception("thread_read_failed", owner_id=owner_id, thread_id=thread_id)
            return None

    async def aggregate_all(self, owner_id: str) -> dict[str, list[Message]]:
        """Map every non-empty thread of *owner_id* to its full message list."""
        try:
            summaries = await self.store.list_threads(owner_id)
        except Exception:
            logger.exception("thread_listing_failed", owner_id=owner_id)
            return {}

        thread_ids = list(dict.fromkeys(s.id for s in summaries))
        results = await asyncio.gather(*(self._fetch(owner_id, tid) for tid in thread_ids))

        collected = {tid: msgs for tid, msgs in zip(thread_ids, results) if msgs}
        ordered = {tid: collected[tid] for tid in conversation_order(collected)}
        logger.debug(
            "memory_aggregated",
            owner_id=owner_id,
            indexed=len(thread_ids),
            returned=len(ordered),
            messages=sum(len(m) for m in ordered.values()),
        )
        return ordered
