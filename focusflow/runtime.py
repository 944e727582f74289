"""Wiring of store, memory, composer, model and turn handler from a Config."""

from __future__ import annotations

from typing import Any

from focusflow.agent.aggregator import MemoryAggregator
from focusflow.agent.context import PromptComposer
from focusflow.agent.model import ModelInvoker, ProviderModel
from focusflow.agent.turn_handler import ConversationTurnHandler
from focusflow.config.schema import Config
from focusflow.logging import get_logger
from focusflow.providers.litellm_provider import LiteLLMProvider
from focusflow.session.store import StoreState, ThreadStore

logger = get_logger(__name__)


def build_model(config: Config) -> ProviderModel:
    provider_cfg = config.provider
    provider = LiteLLMProvider(
        api_key=provider_cfg.resolved_api_key or None,
        api_base=provider_cfg.api_base,
        default_model=provider_cfg.model,
        resilience_config=provider_cfg.resilience,
    )
    return ProviderModel(
        provider,
        model=provider_cfg.model,
        temperature=provider_cfg.temperature,
        max_tokens=provider_cfg.max_tokens,
    )


class Runtime:
    """
    One session's worth of collaborators.

    Use as ``async with Runtime(config) as rt: ...``; leaving the block waits
    for in-flight turns and closes the store.
    """

    def __init__(
        self,
        config: Config,
        *,
        store: ThreadStore | None = None,
        model: ModelInvoker | None = None,
    ):
        self.config = config
        self.store = store or ThreadStore.from_config(config)
        self.model = model or build_model(config)
        self.aggregator = MemoryAggregator(self.store)
        self.composer = PromptComposer(
            history_window=config.memory.history_window,
            related_notes_limit=config.memory.related_notes_limit,
        )
        self.turns = ConversationTurnHandler(
            self.store,
            self.aggregator,
            self.composer,
            self.model,
            prior_messages=config.memory.prior_messages,
            turn_timeout=config.agent.turn_timeout,
        )

    async def start(self) -> StoreState:
        state = await self.store.start()
        if state is StoreState.DEGRADED:
            logger.warning("runtime_started_degraded", workspace=str(self.config.workspace_path))
        return state

    async def close(self) -> None:
        await self.turns.drain()
        await self.store.close()

    async def __aenter__(self) -> Runtime:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
