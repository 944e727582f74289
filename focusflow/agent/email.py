"""Email drafting for a task, in the owner's voice."""

from __future__ import annotations

import re
from dataclasses import dataclass

from focusflow.agent.model import ModelInvoker
from focusflow.logging import get_logger
from focusflow.models import OwnerProfile, Task

logger = get_logger(__name__)

_SUBJECT_RE = re.compile(r"^\s*\**Subject:\**\s*(.+?)\s*$", re.MULTILINE | re.IGNORECASE)

_GUIDELINES = (
    "Keep paragraphs short and scannable",
    "Use bullet points for lists",
    "Include a clear call-to-action",
    "Format with Subject and Body sections",
    "Match the user's typical tone and style",
    "Be professional but authentic to the user's voice",
)


@dataclass(frozen=True)
class EmailDraft:
    subject: str
    body: str


def extract_subject(text: str, default: str) -> str:
    """Return the first ``Subject:`` line of *text*, or *default* when there is none."""
    match = _SUBJECT_RE.search(text or "")
    if match and match.group(1).strip():
        return match.group(1).strip()
    return default


def _strip_subject(text: str) -> str:
    return _SUBJECT_RE.sub("", text, count=1).strip()


def build_email_prompt(profile: OwnerProfile, subject: str, recipients: str, context: str | None) -> str:
    """System prompt for drafting an email that matches the owner's communication style."""
    guidelines = "\n".join(f"{i}. {g}" for i, g in enumerate(_GUIDELINES, start=1))
    return (
        "You are an email drafting assistant for someone with ADHD.\n\n"
        "USER INFORMATION:\n"
        f"Name: {profile.name}\n"
        f"Occupation: {profile.occupation or 'Not specified'}\n"
        f"Communication Style: {profile.communication_style or 'Not specified'}\n\n"
        "TASK:\n"
        "Draft an email that matches the user's communication style perfectly.\n"
        f"- Subject: {subject}\n"
        f"- Recipients: {recipients}\n"
        f"- Context: {context or 'No additional context provided'}\n\n"
        f"Guidelines:\n{guidelines}"
    )


async def draft_email(
    model: ModelInvoker,
    profile: OwnerProfile,
    task: Task,
    recipients: str,
    context: str | None = None,
) -> EmailDraft:
    """Ask the model for a draft about *task*; the subject defaults to the task title."""
    system_prompt = build_email_prompt(profile, task.title, recipients, context or task.context)
    request = (
        f'Please draft a professional email about: "{task.title}". '
        "Please include a subject line and keep it concise and professional."
    )
    text = await model.invoke(system_prompt, [], request)
    subject = extract_subject(text, task.title)
    logger.debug("email_drafted", task_id=task.id, subject_from_model=subject != task.title)
    return EmailDraft(subject=subject, body=_strip_subject(text))
