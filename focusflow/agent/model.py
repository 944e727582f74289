"""Language-model invocation used by the turn handler."""

from __future__ import annotations

from typing import Protocol, Sequence

from focusflow.agent.context import PromptComposer
from focusflow.errors import ModelUnavailable
from focusflow.logging import get_logger
from focusflow.models import Message
from focusflow.providers.base import LLMProvider

logger = get_logger(__name__)


class ModelInvoker(Protocol):
    async def invoke(
        self,
        system_prompt: str,
        prior_messages: Sequence[Message],
        user_message: str,
    ) -> str: ...


class ProviderModel:
    """Adapts an :class:`LLMProvider` to the :class:`ModelInvoker` contract."""

    def __init__(
        self,
        provider: LLMProvider,
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ):
        self.provider = provider
        self.model = model or provider.get_default_model()
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def invoke(
        self,
        system_prompt: str,
        prior_messages: Sequence[Message],
        user_message: str,
    ) -> str:
        messages = PromptComposer.build_messages(system_prompt, prior_messages, user_message)
        response = await self.provider.chat(
            messages,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if response.is_error:
            raise ModelUnavailable(response.content or "model call failed")
        logger.debug("model_replied", model=self.model, usage=response.usage or None)
        return response.content or ""
