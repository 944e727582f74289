"""Prompt composition for coach and task conversations."""

from __future__ import annotations

from typing import Any, Sequence

from focusflow.agent.aggregator import DEFAULT_HISTORY_WINDOW, conversation_order, local_timestamp, recent_window
from focusflow.agent.relevance import RelevanceScorer, keyword_relevance, task_keywords
from focusflow.models import USER, Message, OwnerProfile, Task
from focusflow.session import naming

NO_HISTORY = "No previous conversations available."
NO_RELATED_NOTES = "No related notes from other threads."
NO_TASKS = "No tasks yet."

COMPLETED_GLYPH = "✓"
OPEN_GLYPH = "○"

_TASK_INSTRUCTIONS = (
    "Use short, clear sentences that are easy to process",
    "Break down complex ideas into steps",
    "Use examples and analogies when helpful",
    "Emphasize starting small on intimidating tasks",
    "Refer to past conversations from ANY thread when relevant",
    "Show continuity of thought across different conversations",
    "Be encouraging but practical about time management",
)

_COACH_INSTRUCTIONS = (
    "Use short, clear sentences that are easy to process",
    "Break down complex concepts into simpler parts",
    "Provide specific, actionable advice",
    "Always reference relevant past conversations regardless of which thread they occurred in",
    "Identify patterns across tasks and suggest optimizations",
    "Adapt to the user's communication style and preferences",
    "Your primary role is to help connect knowledge across different tasks and provide a unified view",
)


def _truncate(text: str, max_chars: int = 100) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _sender_label(msg: Message) -> str:
    return "User" if msg.sender == USER else "Assistant"


def _numbered(items: Sequence[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


class PromptComposer:
    """
    Renders the system prompt from profile, task and aggregated history.

    Output depends only on the arguments: threads are ordered by first-message
    timestamp (ties by id) and the instruction lists are fixed per purpose.
    """

    def __init__(
        self,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        related_notes_limit: int = 3,
        relevance: RelevanceScorer = keyword_relevance,
    ):
        self.history_window = history_window
        self.related_notes_limit = related_notes_limit
        self.relevance = relevance

    def compose(
        self,
        profile: OwnerProfile,
        conversations: dict[str, list[Message]],
        *,
        task: Task | None = None,
        tasks: Sequence[Task] = (),
    ) -> str:
        """Build the system prompt for a task thread (``task`` given) or the coach thread."""
        if task is not None:
            return self._compose_task(profile, task, conversations)
        return self._compose_coach(profile, tasks, conversations)

    def format_conversations(self, conversations: dict[str, list[Message]]) -> str:
        """Render every non-empty thread as a labeled block of its most recent messages."""
        blocks: list[str] = []
        for thread_id in conversation_order(conversations):
            recent = recent_window(conversations[thread_id], self.history_window)
            lines = "\n".join(f"{_sender_label(m)}: {m.content}" for m in recent)
            blocks.append(f"--- Thread: {naming.label_for(thread_id)} ---\n{lines}")
        if not blocks:
            return NO_HISTORY
        return "\n\n".join(blocks)

    @staticmethod
    def _profile_section(profile: OwnerProfile) -> str:
        fields = (
            ("Name", profile.name),
            ("Occupation", profile.occupation),
            ("Work Style", profile.work_style),
            ("Communication Style", profile.communication_style),
        )
        lines = [f"{label}: {value}" for label, value in fields if value]
        return "USER INFORMATION:\n" + "\n".join(lines)

    @staticmethod
    def _task_section(task: Task) -> str:
        lines = [
            f"Title: {task.title}",
            f"Category: {task.category or 'Uncategorized'}",
            f"Priority: {task.priority or 'medium'}",
        ]
        if task.due_time:
            lines.append(f"Due: {task.due_time}")
        if task.context:
            lines.append(f"Context: {task.context}")
        return "TASK DETAILS:\n" + "\n".join(lines)

    def related_notes(
        self,
        profile: OwnerProfile,
        task: Task,
        conversations: dict[str, list[Message]],
    ) -> list[tuple[str, Message]]:
        """Most recent messages from other threads that the relevance function accepts."""
        if self.related_notes_limit <= 0:
            return []
        keywords = task_keywords(task)
        if not keywords:
            return []
        own_thread = naming.thread_for(profile.id, naming.ThreadPurpose.for_task(task.id))
        hits: list[tuple[str, Message]] = []
        for thread_id in conversation_order(conversations):
            if thread_id == own_thread:
                continue
            hits.extend((thread_id, m) for m in conversations[thread_id] if self.relevance(m, keywords))
        hits.sort(key=lambda hit: (local_timestamp(hit[1].timestamp), hit[0]))
        return hits[-self.related_notes_limit:]

    def _related_section(self, profile: OwnerProfile, task: Task, conversations: dict[str, list[Message]]) -> str:
        notes = self.related_notes(profile, task, conversations)
        if not notes:
            return f"RELATED NOTES FROM OTHER THREADS:\n{NO_RELATED_NOTES}"
        lines = [
            f"- [{naming.label_for(tid)}] {'You mentioned' if m.sender == USER else 'Advice'}: \"{_truncate(m.content)}\""
            for tid, m in notes
        ]
        return "RELATED NOTES FROM OTHER THREADS:\n" + "\n".join(lines)

    def _compose_task(self, profile: OwnerProfile, task: Task, conversations: dict[str, list[Message]]) -> str:
        who = profile.name or "the user"
        sections = [
            f'You are an AI assistant helping {who} with the task: "{task.title}".',
            self._profile_section(profile),
            self._task_section(task),
            self._related_section(profile, task, conversations),
            "COMPLETE CONVERSATION HISTORY FROM ALL THREADS:\n" + self.format_conversations(conversations),
            "INSTRUCTIONS:\n" + _numbered(_TASK_INSTRUCTIONS),
        ]
        return "\n\n".join(sections)

    @staticmethod
    def _task_line(task: Task) -> str:
        glyph = COMPLETED_GLYPH if task.completed else OPEN_GLYPH
        details = []
        if task.priority:
            details.append(f"Priority: {task.priority}")
        if task.due_time:
            details.append(f"Due: {task.due_time}")
        suffix = f" ({', '.join(details)})" if details else ""
        return f"- {glyph} {task.title}{suffix}"

    def _compose_coach(
        self,
        profile: OwnerProfile,
        tasks: Sequence[Task],
        conversations: dict[str, list[Message]],
    ) -> str:
        who = profile.name or "the user"
        completed = sum(1 for t in tasks if t.completed)
        high_priority = sum(1 for t in tasks if t.priority == "high" and not t.completed)
        task_lines = "\n".join(self._task_line(t) for t in tasks) or NO_TASKS
        sections = [
            f"You are an AI assistant specifically designed to help {who} with ADHD "
            "manage tasks and life responsibilities.",
            "IMPORTANT: You have access to ALL previous conversations across all tasks. "
            "Use this knowledge to provide continuity and context-aware responses.",
            self._profile_section(profile),
            "TASK OVERVIEW:\n"
            f"Total Tasks: {len(tasks)}\n"
            f"Completed Tasks: {completed}\n"
            f"High Priority Tasks: {high_priority}",
            "DETAILED TASKS:\n" + task_lines,
            "COMPLETE CONVERSATION HISTORY FROM ALL THREADS:\n" + self.format_conversations(conversations),
            "INSTRUCTIONS:\n" + _numbered(_COACH_INSTRUCTIONS),
            "Your role is to be a life coach who helps manage the big picture "
            "while being aware of all individual tasks and conversations.",
        ]
        return "\n\n".join(sections)

    @staticmethod
    def build_messages(
        system_prompt: str,
        prior_messages: Sequence[Message],
        user_message: str,
    ) -> list[dict[str, Any]]:
        """Build the provider message list: system prompt, prior turns, new user message."""
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        for m in prior_messages:
            if m.metadata.get("source") == "fallback":
                continue
            messages.append({"role": "user" if m.sender == USER else "assistant", "content": m.content})
        messages.append({"role": "user", "content": user_message})
        return messages

    @staticmethod
    def summarize_thread(messages: Sequence[Message]) -> str:
        """One-line summary: message counts plus the latest user topics."""
        if not messages:
            return "No conversation yet."
        user_count = sum(1 for m in messages if m.sender == USER)
        assistant_count = len(messages) - user_count
        topics = ", ".join(f'"{_truncate(m.content, 50)}"' for m in messages[-3:] if m.sender == USER)
        return f"{user_count} user messages, {assistant_count} assistant responses. Recent topics: {topics or 'None'}"
