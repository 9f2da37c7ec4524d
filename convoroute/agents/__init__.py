"""
Auxiliary decision agents.

Small LLM calls that run before the primary generation:

    ContextSelector.select()         → subset of history relevant to the new message
    ModelSelector.select()           → model, reasoning effort and temperature
    ResponseLengthSelector.select()  → how long the answer should be

All are best-effort: a failed or malformed agent reply falls back to a
deterministic answer instead of failing the turn.
"""

from convoroute.agents.base import AgentClient, AgentUsage, clean_json_from_markdown
from convoroute.agents.context_selector import ContextSelector
from convoroute.agents.indices import expand_indices
from convoroute.agents.length_selector import ResponseLengthSelector, default_length
from convoroute.agents.model_selector import ModelSelector, fallback_decision
from convoroute.agents.models import ModelSelectionDecision, ResponseLengthDecision

__all__ = [
    "AgentClient",
    "AgentUsage",
    "ContextSelector",
    "ModelSelectionDecision",
    "ModelSelector",
    "ResponseLengthDecision",
    "ResponseLengthSelector",
    "clean_json_from_markdown",
    "default_length",
    "expand_indices",
    "fallback_decision",
]
