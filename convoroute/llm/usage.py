"""
Token and cost extraction from LiteLLM responses.
"""

from decimal import Decimal
from typing import Any

from litellm import completion_cost

from convoroute.config.logging import get_logger
from convoroute.llm.models import TokenUsage

logger = get_logger(__name__)


def extract_usage(response: Any) -> TokenUsage:
    """Prompt/completion token counts, zero when the backend did not report them."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    prompt = getattr(usage, "prompt_tokens", 0)
    completion = getattr(usage, "completion_tokens", 0)
    return TokenUsage(
        prompt_tokens=prompt if isinstance(prompt, int) else 0,
        completion_tokens=completion if isinstance(completion, int) else 0,
    )


def extract_cost(response: Any) -> Decimal:
    """
    Dollar cost of a completion according to LiteLLM's price map.

    Models missing from the map (or responses without usage) cost 0.
    """
    try:
        cost = completion_cost(completion_response=response)
    except Exception as e:
        logger.debug(f"Cost unavailable for response: {e}")
        return Decimal("0")
    if not isinstance(cost, (int, float)):
        return Decimal("0")
    return Decimal(str(cost))
