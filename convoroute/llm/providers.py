"""
Provider adapters.

Every backend is wrapped in a ProviderAdapter with the same contract: take
a system prompt, prior turns, the new user text and an optional parameter
bundle, and return the first completion choice. All calls go through
LiteLLM; the subclasses only differ in which models they serve (by vendor
prefix) and which sampling parameters their backend accepts. An adapter
never substitutes a model it was not asked for.

Parameters a backend does not support are dropped with a warning rather
than sent and rejected.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from litellm import acompletion

from convoroute.config.logging import get_logger
from convoroute.config.settings import ProviderEndpoint, Settings
from convoroute.llm.models import ProviderReply, ProviderRequest
from convoroute.llm.usage import extract_cost, extract_usage

logger = get_logger(__name__)

ALL_PARAMS = frozenset(
    {"temperature", "top_p", "top_k", "presence_penalty", "frequency_penalty"}
)


class ProviderAdapter(ABC):
    """Abstract base class for one LLM backend."""

    name: str

    def serves(self, model: str | None) -> bool:
        """Whether this backend can run ``model`` (None means its own default)."""
        return True

    @abstractmethod
    async def generate(self, request: ProviderRequest) -> ProviderReply:
        """
        Run one completion call.

        Returns:
            ProviderReply whose ``text`` is the first choice's content, or
            None when the backend returned no choices

        Raises:
            Exception: Whatever the backend raises (network, auth, timeout)
        """
        pass


def build_messages(request: ProviderRequest) -> list[dict[str, str]]:
    """OpenAI-style message list: system prompt, prior turns, new user text."""
    messages = [{"role": "system", "content": request.system_prompt}]
    messages.extend({"role": turn.role, "content": turn.text} for turn in request.history)
    messages.append({"role": "user", "content": request.text})
    return messages


class LiteLLMProvider(ProviderAdapter):
    """
    Backend reached through ``litellm.acompletion``.

    Args:
        endpoint: Default model and credentials for the backend
        max_tokens: Response length cap
        timeout: Default per-call timeout in seconds

    Class attributes configure the backend:
        name: Router key (matches the weights in settings)
        vendor_prefix: Prefix of model ids this backend serves
            (``openai/gpt-4.1`` is served by the "openai" vendor)
        litellm_prefix: LiteLLM provider route for the call
        supported_params: Sampling parameters the backend accepts
    """

    name: ClassVar[str] = "litellm"
    vendor_prefix: ClassVar[str] = ""
    litellm_prefix: ClassVar[str] = ""
    supported_params: ClassVar[frozenset[str]] = ALL_PARAMS

    def __init__(self, endpoint: ProviderEndpoint, max_tokens: int = 4096, timeout: float = 300.0):
        self._endpoint = endpoint
        self._max_tokens = max_tokens
        self._timeout = timeout

    def serves(self, model: str | None) -> bool:
        return not model or model.startswith(f"{self.vendor_prefix}/")

    def resolve_model(self, selected: str | None) -> str:
        """
        LiteLLM model string for a call.

        Without a selection the backend's configured default is used.

        Raises:
            ValueError: The selected model belongs to another vendor
        """
        if not self.serves(selected):
            raise ValueError(f"{self.name} cannot serve model {selected!r}")
        model_id = self._endpoint.model
        if selected:
            model_id = selected[len(self.vendor_prefix) + 1:]
        return f"{self.litellm_prefix}/{model_id}" if self.litellm_prefix else model_id

    def filter_params(self, request: ProviderRequest) -> dict[str, Any]:
        if request.params is None:
            return {}
        provided = request.params.provided()
        dropped = sorted(set(provided) - self.supported_params)
        if dropped:
            logger.warning(f"{self.name} does not support {', '.join(dropped)}; ignoring")
        return {key: value for key, value in provided.items() if key in self.supported_params}

    async def generate(self, request: ProviderRequest) -> ProviderReply:
        model = self.resolve_model(request.model)
        call_kwargs: dict[str, Any] = {
            "model": model,
            "messages": build_messages(request),
            "max_tokens": self._max_tokens,
            "timeout": request.timeout or self._timeout,
            "drop_params": True,
            **self.filter_params(request),
        }
        if request.reasoning_effort:
            call_kwargs["reasoning_effort"] = request.reasoning_effort
        if self._endpoint.api_key:
            call_kwargs["api_key"] = self._endpoint.api_key
        if self._endpoint.api_base:
            call_kwargs["api_base"] = self._endpoint.api_base

        logger.debug(f"{self.name}: calling {model} with {len(request.history)} history turns")
        response = await acompletion(**call_kwargs)

        text: str | None = None
        if response.choices:
            text = response.choices[0].message.content or ""

        return ProviderReply(
            text=text,
            model=getattr(response, "model", None) or model,
            usage=extract_usage(response),
            cost=extract_cost(response),
        )


class OpenAIProvider(LiteLLMProvider):
    name = "openai"
    vendor_prefix = "openai"
    litellm_prefix = "openai"
    supported_params = ALL_PARAMS - {"top_k"}


class AnthropicProvider(LiteLLMProvider):
    name = "claude"
    vendor_prefix = "anthropic"
    litellm_prefix = "anthropic"
    supported_params = ALL_PARAMS - {"presence_penalty", "frequency_penalty"}


class DeepSeekProvider(LiteLLMProvider):
    name = "deepseek"
    vendor_prefix = "deepseek"
    litellm_prefix = "deepseek"
    supported_params = ALL_PARAMS - {"top_k"}


class GrokProvider(LiteLLMProvider):
    name = "grok"
    vendor_prefix = "x-ai"
    litellm_prefix = "xai"
    supported_params = ALL_PARAMS - {"top_k"}


class OpenRouterProvider(LiteLLMProvider):
    """OpenRouter serves every vendor, so any selected model is honoured."""

    name = "openrouter"
    litellm_prefix = "openrouter"

    def serves(self, model: str | None) -> bool:
        return True

    def resolve_model(self, selected: str | None) -> str:
        return f"{self.litellm_prefix}/{selected or self._endpoint.model}"


_ADAPTERS: tuple[type[LiteLLMProvider], ...] = (
    OpenAIProvider,
    AnthropicProvider,
    DeepSeekProvider,
    GrokProvider,
    OpenRouterProvider,
)


def build_providers(settings: Settings) -> dict[str, ProviderAdapter]:
    """Construct one adapter per known backend from settings."""
    provider_settings = settings.providers
    providers: dict[str, ProviderAdapter] = {}
    for adapter_cls in _ADAPTERS:
        endpoint: ProviderEndpoint = getattr(provider_settings, adapter_cls.name)
        providers[adapter_cls.name] = adapter_cls(
            endpoint,
            max_tokens=provider_settings.max_tokens,
            timeout=provider_settings.request_timeout,
        )
    return providers
