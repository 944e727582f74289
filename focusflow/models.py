"""Data model: messages, owner profiles and tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

USER = "user"
ASSISTANT = "assistant"

# Older clients stored assistant replies with sender "ai".
_SENDER_ALIASES = {"ai": ASSISTANT, "bot": ASSISTANT, "human": USER}


def parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class Message:
    """
    A single conversation message.

    Messages are never mutated in place: an owner edit produces a new
    Message with updated content and ``edited_at`` via the thread store.
    """

    sender: str
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    id: str | None = None
    edited_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_user(self) -> bool:
        return self.sender == USER

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sender": self.sender,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.id is not None:
            data["id"] = self.id
        if self.edited_at is not None:
            data["edited_at"] = self.edited_at.isoformat()
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_timestamp: datetime | None = None) -> Message:
        """Decode a stored record; a missing timestamp falls back to *default_timestamp*, then ``datetime.min``."""
        sender = str(data.get("sender") or data.get("role") or USER).lower()
        sender = _SENDER_ALIASES.get(sender, sender)
        return cls(
            sender=sender,
            content=str(data.get("content") or ""),
            timestamp=parse_datetime(data.get("timestamp")) or default_timestamp or datetime.min,
            id=data.get("id"),
            edited_at=parse_datetime(data.get("edited_at") or data.get("editedAt")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class OwnerProfile:
    """Read-only owner profile used for prompt composition."""

    id: str
    name: str
    occupation: str | None = None
    work_style: str | None = None
    communication_style: str | None = None
    preferences: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OwnerProfile:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            occupation=data.get("occupation") or None,
            work_style=data.get("work_style") or data.get("workStyle") or None,
            communication_style=(
                data.get("communication_style") or data.get("communicationStyle") or None
            ),
            preferences=dict(data.get("preferences") or {}),
        )


@dataclass
class Task:
    """Read-only task record used for prompt composition."""

    id: str
    title: str
    category: str | None = None
    priority: str | None = None
    due_time: str | None = None
    context: str | None = None
    completed: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            category=data.get("category") or None,
            priority=data.get("priority") or None,
            due_time=data.get("due_time") or data.get("dueTime") or None,
            context=data.get("context") or None,
            completed=bool(data.get("completed", False)),
        )
