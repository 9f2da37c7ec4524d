"""
LLM layer.

Provider adapters behind a weighted router, plus the orchestration loop
(``convoroute.llm.orchestrator``) that drives a full turn:

    Orchestrator.handle_turn()
        → ProviderRouter.select()    weighted backend that serves the chosen model
        → ProviderRouter.dispatch()  ProviderAdapter.generate() via LiteLLM
        → retry with backoff, persist, record cost

The orchestrator is imported from its own module; it depends on the
repository interfaces, which in turn depend on the models exported here.
"""

from convoroute.llm.models import (
    ConversationMode,
    EmptyResponseError,
    GenerationParams,
    InboundTurn,
    LLMError,
    OrchestrationError,
    ProviderReply,
    ProviderRequest,
    TokenUsage,
    TurnResponse,
    TurnState,
)
from convoroute.llm.providers import ProviderAdapter, build_providers
from convoroute.llm.router import ProviderRouter

__all__ = [
    "ConversationMode",
    "EmptyResponseError",
    "GenerationParams",
    "InboundTurn",
    "LLMError",
    "OrchestrationError",
    "ProviderAdapter",
    "ProviderReply",
    "ProviderRequest",
    "ProviderRouter",
    "TokenUsage",
    "TurnResponse",
    "TurnState",
    "build_providers",
]
