"""Breaking a task into a few small, concrete steps."""

from __future__ import annotations

import re

from focusflow.agent.model import ModelInvoker
from focusflow.logging import get_logger
from focusflow.models import OwnerProfile, Task

logger = get_logger(__name__)

_STEP_MARKER_RE = re.compile(r"\d+\.")


def build_breakdown_prompt(profile: OwnerProfile) -> str:
    return (
        "You are an ADHD task breakdown specialist. "
        "Break the following task into 3-5 small, concrete steps.\n\n"
        f"User has these work preferences: {profile.work_style or 'Not specified'}\n\n"
        "Make the first step extremely small and easy to start (reduce activation energy).\n"
        "Be specific and actionable.\n"
        "Avoid vague instructions."
    )


def describe_task(task: Task) -> str:
    """Title plus any stored context, as sent to the model."""
    if task.context:
        return f"{task.title}\n\n{task.context}"
    return task.title


def split_steps(text: str) -> list[str]:
    """
    Split a numbered-list reply into steps.

    Text before the first number counts as a step when it is not blank, so a
    reply without any numbering comes back as a single step.
    """
    return [step.strip() for step in _STEP_MARKER_RE.split(text or "") if step.strip()]


async def breakdown_task(model: ModelInvoker, profile: OwnerProfile, description: str) -> list[str]:
    """Ask the model to break *description* into steps; model errors propagate."""
    text = await model.invoke(build_breakdown_prompt(profile), [], description)
    steps = split_steps(text)
    logger.debug("task_broken_down", steps=len(steps))
    return steps
