"""Conversation turn handling: persist, recall, compose, invoke, deliver."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from focusflow.agent.aggregator import DEFAULT_HISTORY_WINDOW, MemoryAggregator, recent_window
from focusflow.agent.context import PromptComposer
from focusflow.agent.model import ModelInvoker
from focusflow.logging import bind_turn, get_logger
from focusflow.models import ASSISTANT, USER, Message, OwnerProfile, Task
from focusflow.session import naming
from focusflow.session.store import ThreadStore

logger = get_logger(__name__)

FALLBACK_TEXT = "I'm sorry, I encountered an error. Please try again."


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class TurnResult:
    state: TurnState
    thread_id: str | None = None
    reply: Message | None = None
    user_message: Message | None = None

    @property
    def delivered(self) -> bool:
        return self.state is TurnState.DELIVERED


class ConversationTurnHandler:
    """
    Runs one conversational turn for an owner.

    The user's message is committed to its thread as soon as it arrives, so
    it survives a failed or abandoned turn and is never held back behind a
    slow model call. Replies on the same thread are produced one at a time in
    arrival order; turns on different threads run concurrently. A turn keeps
    running if the caller stops waiting for it.
    """

    def __init__(
        self,
        store: ThreadStore,
        aggregator: MemoryAggregator,
        composer: PromptComposer,
        model: ModelInvoker,
        *,
        prior_messages: int = DEFAULT_HISTORY_WINDOW,
        turn_timeout: float | None = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.composer = composer
        self.model = model
        self.prior_messages = prior_messages
        self.turn_timeout = turn_timeout
        self._queue_tails: dict[str, asyncio.Future[None]] = {}
        self._inflight: set[asyncio.Task[TurnResult]] = set()
        self._states: dict[str, TurnState] = {}

    def state_of(self, thread_id: str) -> TurnState:
        return self._states.get(thread_id, TurnState.IDLE)

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    async def send_message(
        self,
        profile: OwnerProfile,
        text: str,
        *,
        task: Task | None = None,
        tasks: Sequence[Task] = (),
    ) -> TurnResult:
        """
        Handle one user message in the coach thread, or in *task*'s thread.

        Args:
            profile: The owner sending the message.
            text: Raw message text; whitespace-only input is ignored.
            task: Task the conversation belongs to, or None for the coach.
            tasks: The owner's full task list, rendered in the coach prompt.

        Returns:
            TurnResult carrying the reply. On model failure the reply is the
            fixed fallback message, which is not written to the thread.
        """
        if not text or not text.strip():
            return TurnResult(state=TurnState.IDLE)

        purpose = naming.ThreadPurpose.for_task(task.id) if task is not None else naming.ThreadPurpose.coach()
        thread_id = naming.thread_for(profile.id, purpose)

        # Take a place in the thread's reply queue before the first await.
        previous = self._queue_tails.get(thread_id)
        done = asyncio.get_running_loop().create_future()
        self._queue_tails[thread_id] = done

        turn = asyncio.create_task(self._run_turn(profile, thread_id, text, task, tasks, previous, done))
        self._inflight.add(turn)
        turn.add_done_callback(self._inflight.discard)
        return await asyncio.shield(turn)

    async def drain(self) -> None:
        """Wait for every in-flight turn to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _leave_queue(self, thread_id: str, done: asyncio.Future[None]) -> None:
        if not done.done():
            done.set_result(None)
        if self._queue_tails.get(thread_id) is done:
            del self._queue_tails[thread_id]

    async def _prior_history(self, thread_id: str, user_message: Message) -> list[Message]:
        """Thread history as of this turn: everything but this message and the ones queued behind it."""
        try:
            history = await self.store.read_all(thread_id)
        except Exception:
            logger.exception("prior_history_unavailable")
            return []
        prior: list[Message] = []
        after_own = False
        for m in history:
            if m.id == user_message.id:
                after_own = True
            elif not (after_own and m.is_user):
                prior.append(m)
        return recent_window(prior, self.prior_messages)

    async def _invoke(self, system_prompt: str, prior: list[Message], text: str) -> str:
        call = self.model.invoke(system_prompt, prior, text)
        if self.turn_timeout:
            return await asyncio.wait_for(call, timeout=self.turn_timeout)
        return await call

    def _fail(self, thread_id: str, user_message: Message) -> TurnResult:
        self._states[thread_id] = TurnState.FAILED
        reply = Message(sender=ASSISTANT, content=FALLBACK_TEXT, metadata={"source": "fallback"})
        return TurnResult(TurnState.FAILED, thread_id, reply, user_message)

    async def _run_turn(
        self,
        profile: OwnerProfile,
        thread_id: str,
        text: str,
        task: Task | None,
        tasks: Sequence[Task],
        previous: asyncio.Future[None] | None,
        done: asyncio.Future[None],
    ) -> TurnResult:
        bind_turn(profile.id, thread_id)
        try:
            user_message = await self.store.append(
                thread_id,
                Message(sender=USER, content=text),
                owner_id=profile.id,
            )
            self._states[thread_id] = TurnState.AWAITING_RESPONSE
            if previous is not None:
                await previous
            return await self._respond(profile, thread_id, user_message, task, tasks)
        finally:
            self._leave_queue(thread_id, done)

    async def _respond(
        self,
        profile: OwnerProfile,
        thread_id: str,
        user_message: Message,
        task: Task | None,
        tasks: Sequence[Task],
    ) -> TurnResult:
        text = user_message.content
        prior = await self._prior_history(thread_id, user_message)
        logger.info("turn_started", prior_messages=len(prior), has_task=task is not None, preview=text)

        conversations = await self.aggregator.aggregate_all(profile.id)
        system_prompt = self.composer.compose(profile, conversations, task=task, tasks=tasks)

        try:
            reply_text = await self._invoke(system_prompt, prior, text)
        except asyncio.TimeoutError:
            logger.error("turn_timed_out", timeout=self.turn_timeout)
            return self._fail(thread_id, user_message)
        except Exception:
            logger.exception("turn_failed")
            return self._fail(thread_id, user_message)

        if not isinstance(reply_text, str) or not reply_text.strip():
            logger.warning("model_empty_reply", reply_type=type(reply_text).__name__)
            return self._fail(thread_id, user_message)

        reply = await self.store.append(
            thread_id,
            Message(sender=ASSISTANT, content=reply_text, metadata={"source": "model"}),
            owner_id=profile.id,
        )
        self._states[thread_id] = TurnState.DELIVERED
        logger.info("turn_delivered", reply_chars=len(reply_text))
        return TurnResult(TurnState.DELIVERED, thread_id, reply, user_message)
