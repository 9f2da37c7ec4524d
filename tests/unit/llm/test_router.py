"""
Unit tests for ProviderRouter.
"""

import random
from collections import Counter
from unittest.mock import AsyncMock, MagicMock

import pytest

from convoroute.config.settings import Settings
from convoroute.llm.models import EmptyResponseError, LLMError, ProviderReply, ProviderRequest
from convoroute.llm.providers import build_providers
from convoroute.llm.router import ProviderRouter


def _make_provider(name: str, reply: ProviderReply | None = None, error: Exception | None = None):
    provider = MagicMock()
    provider.name = name
    provider.generate = AsyncMock(return_value=reply, side_effect=error)
    return provider


def _providers(*names: str) -> dict:
    return {name: _make_provider(name) for name in names}


REQUEST = ProviderRequest(system_prompt="sys", text="hello")


class TestConstruction:

    @pytest.mark.parametrize(
        "weights",
        [
            {"openai": -1, "claude": 5},
            {"openai": 1.5},
            {"openai": True},
            {"openai": 0, "claude": 0},
            {},
        ],
    )
    def test_invalid_weights_rejected(self, weights):
        with pytest.raises(ValueError):
            ProviderRouter(weights, _providers("openai", "claude"))

    def test_weighted_provider_without_adapter_rejected(self):
        with pytest.raises(ValueError, match="grok"):
            ProviderRouter({"openai": 1, "grok": 1}, _providers("openai"))

    def test_zero_weight_provider_needs_no_adapter(self):
        router = ProviderRouter({"openai": 1, "grok": 0}, _providers("openai"))
        assert router.weights == {"openai": 1}

    def test_unknown_fallback_rejected(self):
        with pytest.raises(ValueError, match="openrouter"):
            ProviderRouter({"openai": 1}, _providers("openai"), fallback="openrouter")


class TestSelect:

    def test_distribution_follows_weights(self):
        router = ProviderRouter(
            {"openai": 40, "grok": 25, "claude": 20, "deepseek": 15},
            _providers("openai", "grok", "claude", "deepseek"),
            rng=random.Random(1234),
        )

        counts = Counter(router.select().name for _ in range(10_000))

        assert 3700 < counts["openai"] < 4300
        assert 2200 < counts["grok"] < 2800
        assert 1700 < counts["claude"] < 2300
        assert 1200 < counts["deepseek"] < 1800

    def test_zero_weight_never_selected(self):
        router = ProviderRouter(
            {"openai": 1, "claude": 0},
            _providers("openai", "claude"),
            rng=random.Random(7),
        )

        names = {router.select().name for _ in range(500)}

        assert names == {"openai"}


class TestModelRouting:
    """Real adapters: only backends that serve the model are drawn."""

    @pytest.fixture
    def router(self):
        settings = Settings(_env_file=None)
        return ProviderRouter(
            settings.providers.weights,
            build_providers(settings),
            fallback=settings.providers.fallback,
            rng=random.Random(99),
        )

    def test_vendor_model_always_goes_to_its_vendor(self, router):
        names = {router.select("openai/gpt-4o-mini").name for _ in range(500)}
        assert names == {"openai"}

    def test_anthropic_model_goes_to_claude(self, router):
        names = {router.select("anthropic/claude-sonnet-4.5").name for _ in range(200)}
        assert names == {"claude"}

    def test_unserved_vendor_uses_fallback_despite_zero_weight(self, router):
        assert router.select("google/gemini-2.5-flash").name == "openrouter"

    def test_no_model_draws_from_all_weighted(self, router):
        names = {router.select().name for _ in range(2000)}
        assert names == {"openai", "grok", "claude", "deepseek"}

    def test_no_serving_provider_raises(self):
        settings = Settings(_env_file=None)
        router = ProviderRouter({"openai": 1}, build_providers(settings), fallback=None)

        with pytest.raises(LLMError, match="google/gemini-2.5-flash"):
            router.select("google/gemini-2.5-flash")

    def test_fallback_not_drawn_when_a_weighted_vendor_serves(self):
        settings = Settings(_env_file=None)
        router = ProviderRouter(
            {"openai": 1, "claude": 1}, build_providers(settings), fallback="openrouter"
        )

        assert {router.select("anthropic/claude-sonnet-4").name for _ in range(100)} == {"claude"}


class TestDispatch:

    @pytest.mark.asyncio
    async def test_returns_reply(self):
        provider = _make_provider("openai", reply=ProviderReply(text="hi"))
        router = ProviderRouter({"openai": 1}, {"openai": provider})

        reply = await router.dispatch(provider, REQUEST)

        assert reply.text == "hi"
        provider.generate.assert_awaited_once_with(REQUEST)

    @pytest.mark.asyncio
    async def test_empty_reply_raises(self):
        provider = _make_provider("openai", reply=ProviderReply(text=None))
        router = ProviderRouter({"openai": 1}, {"openai": provider})

        with pytest.raises(EmptyResponseError):
            await router.dispatch(provider, REQUEST)

    @pytest.mark.asyncio
    async def test_empty_string_is_a_valid_reply(self):
        provider = _make_provider("openai", reply=ProviderReply(text=""))
        router = ProviderRouter({"openai": 1}, {"openai": provider})

        reply = await router.dispatch(provider, REQUEST)

        assert reply.text == ""

    @pytest.mark.asyncio
    async def test_adapter_error_wrapped(self):
        cause = ConnectionError("reset by peer")
        provider = _make_provider("claude", error=cause)
        router = ProviderRouter({"claude": 1}, {"claude": provider})

        with pytest.raises(LLMError, match="claude call failed") as exc_info:
            await router.dispatch(provider, REQUEST)

        assert exc_info.value.cause is cause
