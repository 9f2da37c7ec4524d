"""
Response length detection.

A small agent reads the new message and picks one of five length
categories. The choice only shapes the system prompt through a guideline
block, so any failure quietly falls back to "medium".
"""

from __future__ import annotations

from convoroute.agents.base import AgentClient, AgentUsage
from convoroute.agents.models import RESPONSE_LENGTHS, ResponseLengthDecision
from convoroute.agents.prompts import (
    RESPONSE_LENGTH_INSTRUCTION,
    RESPONSE_LENGTH_PROMPT,
    render,
)
from convoroute.config.logging import get_logger

logger = get_logger(__name__)

LENGTH_AGENT_TEMPERATURE = 0.2


def default_length(reason: str) -> ResponseLengthDecision:
    return ResponseLengthDecision(
        length="medium", confidence=0.5, reasoning=f"Defaulted to medium due to {reason}"
    )


class ResponseLengthSelector:
    """
    Picks the length category of the answer to a message.

    Args:
        client: Agent model used for the detection call
        prompt: Prompt template with a ``{message}`` placeholder
    """

    def __init__(self, client: AgentClient, prompt: str = RESPONSE_LENGTH_PROMPT):
        self._client = client
        self._prompt = prompt

    async def select(self, new_text: str, usage: AgentUsage | None = None) -> ResponseLengthDecision:
        """Detect the desired length. Never raises."""
        try:
            payload = await self._client.ask_json(
                render(self._prompt, message=new_text), RESPONSE_LENGTH_INSTRUCTION, usage
            )
        except Exception as e:
            logger.warning(f"Response length detection failed, using medium: {e}")
            return default_length(type(e).__name__)

        length = payload.get("length")
        if length not in RESPONSE_LENGTHS:
            logger.warning(f"Invalid response length {length!r}, using medium")
            return default_length("invalid length")

        confidence = payload.get("confidence", 0.5)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 0.5

        decision = ResponseLengthDecision(
            length=length,
            confidence=min(max(float(confidence), 0.0), 1.0),
            reasoning=str(payload.get("reasoning", "")),
        )
        logger.info(
            f"Response length: {decision.length} "
            f"(confidence {decision.confidence:.2f}: {decision.reasoning})"
        )
        return decision
