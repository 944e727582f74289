"""Thread identifier convention.

Thread ids encode the owner and the purpose of a conversation:

- ``user_<owner>_coach`` for the general life-coach thread
- ``user_<owner>_task_<task_id>`` for a task-specific thread

The owner component is percent-encoded (underscores included) so the first
``_`` after the owner always starts the purpose. Ids written by older clients
with plain owner ids parse the same way as long as the owner had no ``_``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import quote, unquote

COACH = "coach"
TASK = "task"
UNKNOWN = "unknown"

COACH_LABEL = "Life Coach"

_COACH_RE = re.compile(r"user_(?P<owner>[^_]+)_coach")
_TASK_RE = re.compile(r"user_(?P<owner>[^_]+)_task_(?P<task>.+)", re.DOTALL)


@dataclass(frozen=True)
class ThreadPurpose:
    """Why a thread exists: coaching, a specific task, or unrecognized."""

    kind: str
    task_id: str | None = None

    @classmethod
    def coach(cls) -> ThreadPurpose:
        return cls(COACH)

    @classmethod
    def for_task(cls, task_id: str | int) -> ThreadPurpose:
        return cls(TASK, str(task_id))

    @classmethod
    def unknown(cls) -> ThreadPurpose:
        return cls(UNKNOWN)

    @property
    def is_task(self) -> bool:
        return self.kind == TASK

    @property
    def is_coach(self) -> bool:
        return self.kind == COACH


@dataclass(frozen=True)
class ThreadRef:
    """Result of parsing a thread id."""

    owner_id: str | None
    purpose: ThreadPurpose

    @property
    def recognized(self) -> bool:
        return self.purpose.kind != UNKNOWN


def _encode_owner(owner_id: str) -> str:
    return quote(owner_id, safe="").replace("_", "%5F")


def thread_for(owner_id: str, purpose: ThreadPurpose) -> str:
    """Return the canonical thread id for ``(owner_id, purpose)``."""
    if not owner_id:
        raise ValueError("owner_id must be a non-empty string")
    owner = _encode_owner(owner_id)
    if purpose.kind == COACH:
        return f"user_{owner}_coach"
    if purpose.kind == TASK and purpose.task_id:
        return f"user_{owner}_task_{purpose.task_id}"
    raise ValueError(f"Cannot build a thread id for purpose {purpose!r}")


def parse(thread_id: str) -> ThreadRef:
    """Parse a thread id; unrecognized input yields an unknown purpose, never an error."""
    if not isinstance(thread_id, str):
        return ThreadRef(None, ThreadPurpose.unknown())
    m = _COACH_RE.fullmatch(thread_id)
    if m:
        return ThreadRef(unquote(m.group("owner")), ThreadPurpose.coach())
    m = _TASK_RE.fullmatch(thread_id)
    if m:
        return ThreadRef(unquote(m.group("owner")), ThreadPurpose.for_task(m.group("task")))
    return ThreadRef(None, ThreadPurpose.unknown())


def owned_by(thread_id: str, owner_id: str) -> bool:
    """
    Whether *thread_id* may belong to *owner_id*.

    Ids that carry no owner are accepted. Older clients wrote owner ids
    unencoded, so an owner segment that matches *owner_id* verbatim is
    accepted as well as one that decodes to it.
    """
    if not isinstance(thread_id, str):
        return False
    m = _COACH_RE.fullmatch(thread_id) or _TASK_RE.fullmatch(thread_id)
    if not m:
        return True
    raw = m.group("owner")
    return raw == owner_id or unquote(raw) == owner_id


def label_for(thread_id: str) -> str:
    """Human-readable label: ``Task <id>``, ``Life Coach`` or the raw id."""
    ref = parse(thread_id)
    if ref.purpose.is_task:
        return f"Task {ref.purpose.task_id}"
    if ref.purpose.is_coach:
        return COACH_LABEL
    return thread_id
