"""
Provider Router.

Weighted random choice over the configured backends that can serve the
requested model. The distribution is static: the router does not track
provider health, and a failed call is retried one layer up by drawing again.

A model that no weighted backend serves goes to the fallback provider
(OpenRouter by default), whatever its weight.
"""

from __future__ import annotations

import random
from collections.abc import Mapping

from convoroute.config.logging import get_logger
from convoroute.llm.models import EmptyResponseError, LLMError, ProviderReply, ProviderRequest
from convoroute.llm.providers import ProviderAdapter

logger = get_logger(__name__)


class ProviderRouter:
    """
    Chooses a backend per attempt and issues the call.

    Args:
        weights: Provider name -> non-negative integer weight. A provider is
            picked with probability weight / total among the providers that
            serve the model; weight 0 keeps it out of the draw.
        providers: Provider name -> adapter
        fallback: Provider for models no weighted provider serves
        rng: Random source (seed it in tests)

    Raises:
        ValueError: On negative or non-integer weights, no positive weight,
            a weighted provider without an adapter, or an unknown fallback
    """

    def __init__(
        self,
        weights: Mapping[str, int],
        providers: Mapping[str, ProviderAdapter],
        fallback: str | None = None,
        rng: random.Random | None = None,
    ):
        for name, weight in weights.items():
            if isinstance(weight, bool) or not isinstance(weight, int):
                raise ValueError(f"Weight for {name!r} must be an integer, got {weight!r}")
            if weight < 0:
                raise ValueError(f"Weight for {name!r} must be >= 0, got {weight}")

        active = {name: weight for name, weight in weights.items() if weight > 0}
        if not active:
            raise ValueError("At least one provider must have a positive weight")

        missing = sorted(name for name in active if name not in providers)
        if missing:
            raise ValueError(f"No adapter configured for: {', '.join(missing)}")
        if fallback is not None and fallback not in providers:
            raise ValueError(f"No adapter configured for fallback provider {fallback!r}")

        self._names = list(active)
        self._weights = [active[name] for name in self._names]
        self._providers = dict(providers)
        self._fallback = fallback
        self._rng = rng or random.Random()

        logger.info(
            "Provider weights: "
            + ", ".join(f"{name}={weight}" for name, weight in active.items())
            + (f" (fallback: {fallback})" if fallback else "")
        )

    @property
    def weights(self) -> dict[str, int]:
        return dict(zip(self._names, self._weights))

    def select(self, model: str | None = None) -> ProviderAdapter:
        """
        Draw one provider able to serve ``model``.

        With no model every weighted provider is a candidate.

        Raises:
            LLMError: Neither a weighted provider nor the fallback serves the model
        """
        names, weights = [], []
        for name, weight in zip(self._names, self._weights):
            if self._providers[name].serves(model):
                names.append(name)
                weights.append(weight)

        if names:
            name = self._rng.choices(names, weights=weights, k=1)[0]
            return self._providers[name]

        if self._fallback is not None and self._providers[self._fallback].serves(model):
            logger.info(f"No weighted provider serves {model}, using {self._fallback}")
            return self._providers[self._fallback]

        raise LLMError(f"No configured provider serves model {model!r}")

    async def dispatch(self, provider: ProviderAdapter, request: ProviderRequest) -> ProviderReply:
        """
        Call ``provider`` and require a completion choice in its reply.

        Raises:
            EmptyResponseError: The backend returned no choices
            LLMError: The adapter raised
        """
        try:
            reply = await provider.generate(request)
        except Exception as e:
            raise LLMError(f"{provider.name} call failed: {e}", cause=e) from e

        if reply.text is None:
            raise EmptyResponseError(f"{provider.name} returned no completion choices")
        return reply
