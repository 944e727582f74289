import pytest

from focusflow.agent.email import EmailDraft, build_email_prompt, draft_email, extract_subject
from focusflow.models import OwnerProfile, Task

PROFILE = OwnerProfile(id="u1", name="Sam", occupation="Designer", communication_style="Warm and brief")
TASK = Task(id="3", title="Reschedule client review", context="Client asked for next week")


class RecordingModel:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls = []

    async def invoke(self, system_prompt, prior_messages, user_message):
        self.calls.append((system_prompt, list(prior_messages), user_message))
        return self.reply


def test_extract_subject_finds_first_subject_line() -> None:
    text = "Subject: Moving our review\n\nHi Ana,\nSubject: not this one"
    assert extract_subject(text, "default") == "Moving our review"


def test_extract_subject_handles_markdown_bold() -> None:
    assert extract_subject("**Subject:** Quick update\n\nBody", "default") == "Quick update"


def test_extract_subject_defaults_when_missing() -> None:
    assert extract_subject("Hi Ana,\nthanks!", "Reschedule client review") == "Reschedule client review"
    assert extract_subject("", "fallback") == "fallback"


def test_prompt_includes_profile_and_request() -> None:
    prompt = build_email_prompt(PROFILE, TASK.title, "ana@example.com", None)
    assert "Name: Sam" in prompt
    assert "Communication Style: Warm and brief" in prompt
    assert "- Recipients: ana@example.com" in prompt
    assert "- Context: No additional context provided" in prompt
    assert "3. Include a clear call-to-action" in prompt


@pytest.mark.asyncio
async def test_draft_email_splits_subject_and_body() -> None:
    model = RecordingModel("Subject: New time for our review\n\nHi Ana,\n\nCould we move it to Tuesday?\n\nSam")
    draft = await draft_email(model, PROFILE, TASK, "ana@example.com")

    assert draft == EmailDraft(
        subject="New time for our review",
        body="Hi Ana,\n\nCould we move it to Tuesday?\n\nSam",
    )
    system_prompt, prior, _ = model.calls[0]
    assert prior == []
    assert "- Context: Client asked for next week" in system_prompt


@pytest.mark.asyncio
async def test_draft_email_without_subject_uses_task_title() -> None:
    draft = await draft_email(RecordingModel("Hi Ana, quick note."), PROFILE, TASK, "ana@example.com", "Be brief")
    assert draft.subject == "Reschedule client review"
    assert draft.body == "Hi Ana, quick note."
