"""Memory aggregation, prompt composition and conversation turns."""

from focusflow.agent.aggregator import MemoryAggregator
from focusflow.agent.breakdown import breakdown_task
from focusflow.agent.context import PromptComposer
from focusflow.agent.model import ModelInvoker, ProviderModel
from focusflow.agent.turn_handler import ConversationTurnHandler, TurnResult, TurnState

__all__ = [
    "breakdown_task",
    "ConversationTurnHandler",
    "MemoryAggregator",
    "ModelInvoker",
    "PromptComposer",
    "ProviderModel",
    "TurnResult",
    "TurnState",
]
