"""Keyword relevance used to pick related notes from other threads."""

from __future__ import annotations

import re
from typing import Protocol, Sequence

from focusflow.models import Message, Task

MIN_KEYWORD_LENGTH = 4
MIN_MESSAGE_LENGTH = 30

_WORD_RE = re.compile(r"\s+")


class RelevanceScorer(Protocol):
    def __call__(self, message: Message, keywords: Sequence[str]) -> bool: ...


def task_keywords(task: Task) -> list[str]:
    """Lowercased full title, its words and the category, dropping short entries and duplicates."""
    title = " ".join(_WORD_RE.split(task.title.lower().strip()))
    candidates = [title] + title.split(" ") + [(task.category or "").lower()]
    keywords: list[str] = []
    for word in candidates:
        word = word.strip(".,;:!?\"'()[]")
        if len(word) >= MIN_KEYWORD_LENGTH and word not in keywords:
            keywords.append(word)
    return keywords


def keyword_relevance(message: Message, keywords: Sequence[str]) -> bool:
    """True when a reasonably informative message mentions any keyword."""
    if len(message.content) < MIN_MESSAGE_LENGTH:
        return False
    content = message.content.lower()
    return any(keyword in content for keyword in keywords)
