"""
Unit tests for the shared agent plumbing: JSON cleaning, prompt overrides,
transcripts and the AgentClient call.
"""

import asyncio
import base64
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from convoroute.agents.base import (
    AGENT_TEMPERATURE,
    AgentClient,
    AgentUsage,
    clean_json_from_markdown,
    format_transcript,
    resolve_prompt,
)
from convoroute.context.models import ConversationTurn
from convoroute.llm.models import TokenUsage


def _make_response(content: str | None, prompt_tokens: int = 20, completion_tokens: int = 5) -> MagicMock:
    choice = MagicMock()
    choice.message.content = content
    response = MagicMock()
    response.choices = [choice] if content is not None else []
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    return response


class TestCleanJson:

    def test_json_fence(self):
        assert clean_json_from_markdown('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert clean_json_from_markdown('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_unfenced_is_trimmed(self):
        assert clean_json_from_markdown('  {"a": 1} \n') == '{"a": 1}'

    def test_unterminated_fence(self):
        assert clean_json_from_markdown('```json\n{"a": 1}') == '{"a": 1}'


class TestResolvePrompt:

    def test_empty_override_uses_default(self):
        assert resolve_prompt("", "default") == "default"

    def test_plain_text_override(self):
        assert resolve_prompt("Pick the relevant turns.", "default") == "Pick the relevant turns."

    def test_base64_override_is_decoded(self):
        encoded = base64.b64encode("Line one\nLine two {history}".encode()).decode()
        assert resolve_prompt(encoded, "default") == "Line one\nLine two {history}"


class TestTranscript:

    def test_indexed_roles(self):
        turns = [ConversationTurn.user("hi"), ConversationTurn.assistant("hello")]
        assert format_transcript(turns) == "[0] User: hi\n[1] Assistant: hello"


class TestAgentUsage:

    def test_accumulates(self):
        usage = AgentUsage()
        usage.add(TokenUsage(prompt_tokens=10, completion_tokens=2), Decimal("0.001"))
        usage.add(TokenUsage(prompt_tokens=5, completion_tokens=1), Decimal("0.002"))

        assert usage.usage.total_tokens == 18
        assert usage.cost == Decimal("0.003")
        assert usage.calls == 2


class TestAgentClient:

    @pytest.mark.asyncio
    async def test_returns_parsed_json_and_records_usage(self):
        client = AgentClient("openrouter/openai/gpt-4o-mini", timeout=5, api_key="k")
        usage = AgentUsage()

        with patch("convoroute.agents.base.acompletion", new_callable=AsyncMock) as mock_call, \
             patch("convoroute.agents.base.extract_cost", return_value=Decimal("0.01")):
            mock_call.return_value = _make_response('```json\n{"ok": true}\n```')
            payload = await client.ask_json("system", "instruction", usage)

        assert payload == {"ok": True}
        assert usage.usage.total_tokens == 25
        assert usage.cost == Decimal("0.01")
        kwargs = mock_call.call_args.kwargs
        assert kwargs["temperature"] == AGENT_TEMPERATURE
        assert kwargs["model"] == "openrouter/openai/gpt-4o-mini"
        assert kwargs["api_key"] == "k"
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_temperature_override(self):
        client = AgentClient("m", timeout=5, temperature=0.2)

        with patch("convoroute.agents.base.acompletion", new_callable=AsyncMock) as mock_call:
            mock_call.return_value = _make_response('{"length": "brief"}')
            await client.ask_json("s", "i")

        assert mock_call.call_args.kwargs["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_empty_choices_raise(self):
        client = AgentClient("m", timeout=5)

        with patch("convoroute.agents.base.acompletion", new_callable=AsyncMock) as mock_call:
            mock_call.return_value = _make_response(None)
            with pytest.raises(ValueError, match="empty choices"):
                await client.ask_json("s", "i")

    @pytest.mark.asyncio
    async def test_non_json_raises(self):
        client = AgentClient("m", timeout=5)

        with patch("convoroute.agents.base.acompletion", new_callable=AsyncMock) as mock_call:
            mock_call.return_value = _make_response("I think turns 1 and 2")
            with pytest.raises(ValueError, match="unparseable"):
                await client.ask_json("s", "i")

    @pytest.mark.asyncio
    async def test_json_array_raises(self):
        client = AgentClient("m", timeout=5)

        with patch("convoroute.agents.base.acompletion", new_callable=AsyncMock) as mock_call:
            mock_call.return_value = _make_response("[1, 2]")
            with pytest.raises(ValueError, match="JSON object"):
                await client.ask_json("s", "i")

    @pytest.mark.asyncio
    async def test_timeout(self):
        client = AgentClient("m", timeout=0.01)

        async def slow(**kwargs):
            await asyncio.sleep(1)

        with patch("convoroute.agents.base.acompletion", side_effect=slow):
            with pytest.raises(asyncio.TimeoutError):
                await client.ask_json("s", "i")
