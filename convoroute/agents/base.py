"""
Shared plumbing for the auxiliary decision agents.

Each agent makes one small, low-temperature completion call and parses a
JSON object out of the reply. Whatever goes wrong with that call is the
agent's problem: callers always get a usable answer back.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
from decimal import Decimal
from typing import Any

from litellm import acompletion

from convoroute.config.logging import get_logger
from convoroute.context.models import ConversationTurn
from convoroute.llm.models import TokenUsage
from convoroute.llm.usage import extract_cost, extract_usage

logger = get_logger(__name__)

AGENT_TEMPERATURE = 0.1


class AgentUsage:
    """Accumulates tokens and cost of every agent call made for one turn."""

    def __init__(self) -> None:
        self.usage = TokenUsage()
        self.cost = Decimal("0")
        self.calls = 0

    def add(self, usage: TokenUsage, cost: Decimal) -> None:
        self.usage = self.usage + usage
        self.cost += cost
        self.calls += 1


def clean_json_from_markdown(raw: str) -> str:
    """
    Strip a surrounding markdown code fence from a model reply.

    Models often wrap JSON in ```json ... ``` even when told not to.
    """
    text = raw.strip()
    if text.startswith("```"):
        text = text[3:]
        if text.startswith("json"):
            text = text[4:]
        end = text.rfind("```")
        if end != -1:
            text = text[:end]
    return text.strip()


def resolve_prompt(override: str, default: str) -> str:
    """
    Pick the configured prompt override, or the default when none is set.

    Overrides may be given as plain text or base64 (handy for multi-line
    prompts in environment variables).
    """
    if not override:
        return default
    try:
        return base64.b64decode(override, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return override


def format_transcript(turns: list[ConversationTurn]) -> str:
    """Render turns as ``[i] Role: text`` lines for an agent prompt."""
    lines = []
    for index, turn in enumerate(turns):
        role = "Assistant" if turn.role == "assistant" else "User"
        lines.append(f"[{index}] {role}: {turn.text}")
    return "\n".join(lines)


class AgentClient:
    """
    One auxiliary model behind LiteLLM.

    Args:
        model: LiteLLM model string (e.g. "openrouter/openai/gpt-4o-mini")
        timeout: Seconds before the call is abandoned
        api_key: Optional API key passed through to LiteLLM
        name: Label used in log messages
        temperature: Sampling temperature of the agent call
    """

    def __init__(
        self,
        model: str,
        timeout: float,
        api_key: str = "",
        name: str = "agent",
        temperature: float = AGENT_TEMPERATURE,
    ):
        self.model = model
        self.timeout = timeout
        self.name = name
        self.temperature = temperature
        self._api_key = api_key

    async def ask_json(
        self,
        system_prompt: str,
        instruction: str,
        usage: AgentUsage | None = None,
    ) -> dict[str, Any]:
        """
        Run the agent and return its reply parsed as a JSON object.

        Raises:
            asyncio.TimeoutError: The call exceeded the agent timeout
            ValueError: No choices, or the reply is not a JSON object
            Exception: Anything LiteLLM raises
        """
        call_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": instruction},
            ],
            "temperature": self.temperature,
        }
        if self._api_key:
            call_kwargs["api_key"] = self._api_key

        response = await asyncio.wait_for(acompletion(**call_kwargs), timeout=self.timeout)

        if usage is not None:
            usage.add(extract_usage(response), extract_cost(response))

        if not response.choices:
            raise ValueError(f"{self.name}: empty choices in response")

        text = clean_json_from_markdown(response.choices[0].message.content or "")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"{self.name}: unparseable reply {text!r}") from e
        if not isinstance(payload, dict):
            raise ValueError(f"{self.name}: expected a JSON object, got {type(payload).__name__}")
        return payload
