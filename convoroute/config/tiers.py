"""
Tier (user grade) policies.

A TierPolicy bundles everything a user grade is entitled to: the ordered
list of models the dialer may use, the default reasoning effort, how much
conversation history is kept, and the usage and spending ceilings.

PolicySet holds the tiers in explicit ascending order (lowest grade first).
That order is what "downgrade" and "fallback" mean throughout the package,
so it is validated once here instead of being re-derived from list
positions at every call site.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from convoroute.config.logging import get_logger

logger = get_logger(__name__)

ReasoningEffort = Literal["low", "medium", "high"]
REASONING_EFFORTS: tuple[str, ...] = ("low", "medium", "high")


class UsageKind(str, Enum):
    """Kinds of metered requests. Each kind has its own counters."""

    DIALER = "dialer"
    VISION = "vision"
    WHISPER = "whisper"


class ModelMeta(BaseModel):
    """A model entry as presented to the model-selection agent."""

    name: str = Field(description="Provider-qualified model id, e.g. 'openai/gpt-4.1'")
    aai: int = Field(default=0, ge=0, le=100, description="Capability index (0-100)")
    input_price_per_m: str = Field(default="", description="Input price per 1M tokens")
    output_price_per_m: str = Field(default="", description="Output price per 1M tokens")
    ctx_tokens: str = Field(default="", description="Context window, e.g. '128k'")

    model_config = ConfigDict(frozen=True)


class ContextLimits(BaseModel):
    """How much conversation history a grade keeps."""

    max_turns: int = Field(gt=0)
    max_tokens: int = Field(gt=0)
    ttl_seconds: int = Field(gt=0, description="Sliding expiry of the log from last write")

    model_config = ConfigDict(frozen=True)


class UsageCeiling(BaseModel):
    daily: int = Field(ge=0)
    monthly: int = Field(ge=0)

    model_config = ConfigDict(frozen=True)


class SpendCeiling(BaseModel):
    daily: Decimal = Field(ge=0)
    monthly: Decimal = Field(ge=0)

    model_config = ConfigDict(frozen=True)


class TierPolicy(BaseModel):
    """Entitlements of a single user grade."""

    grade: str
    display_name: str = ""
    models: list[ModelMeta] = Field(
        min_length=1,
        description="Dialer models, most to least preferred",
    )
    default_effort: ReasoningEffort = "medium"
    context: ContextLimits
    usage: dict[UsageKind, UsageCeiling]
    spending: SpendCeiling

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _all_usage_kinds_present(self) -> TierPolicy:
        missing = [kind.value for kind in UsageKind if kind not in self.usage]
        if missing:
            raise ValueError(f"Tier {self.grade!r} has no usage ceiling for: {', '.join(missing)}")
        return self

    @property
    def model_names(self) -> list[str]:
        return [model.name for model in self.models]

    @property
    def fallback_model(self) -> str:
        """The model used when the agent's choice is unusable: the second entry, else the first."""
        if len(self.models) > 1:
            return self.models[1].name
        return self.models[0].name

    def usage_ceiling(self, kind: UsageKind) -> UsageCeiling:
        return self.usage[kind]


class PolicySet:
    """
    Ordered, validated collection of tier policies.

    Args:
        tiers: Policies from the lowest grade to the highest.

    Raises:
        ValueError: If the set is empty, contains duplicate grades, or a
            higher grade has a lower ceiling than a grade below it.
    """

    def __init__(self, tiers: Sequence[TierPolicy]):
        if not tiers:
            raise ValueError("At least one tier policy is required")

        self._tiers: tuple[TierPolicy, ...] = tuple(tiers)
        self._by_grade: dict[str, TierPolicy] = {}
        for tier in self._tiers:
            if tier.grade in self._by_grade:
                raise ValueError(f"Duplicate tier grade: {tier.grade!r}")
            self._by_grade[tier.grade] = tier

        self._validate_ceilings()

    def _validate_ceilings(self) -> None:
        for lower, higher in zip(self._tiers, self._tiers[1:]):
            for kind in UsageKind:
                low, high = lower.usage_ceiling(kind), higher.usage_ceiling(kind)
                if high.daily < low.daily or high.monthly < low.monthly:
                    raise ValueError(
                        f"Tier {higher.grade!r} has a lower {kind.value} usage ceiling "
                        f"than {lower.grade!r}"
                    )
            if (
                higher.spending.daily < lower.spending.daily
                or higher.spending.monthly < lower.spending.monthly
            ):
                raise ValueError(
                    f"Tier {higher.grade!r} has a lower spending ceiling than {lower.grade!r}"
                )

    @property
    def tiers(self) -> tuple[TierPolicy, ...]:
        return self._tiers

    @property
    def grades(self) -> list[str]:
        return [tier.grade for tier in self._tiers]

    @property
    def lowest(self) -> TierPolicy:
        return self._tiers[0]

    def policy_for(self, grade: str) -> TierPolicy:
        """Return the policy for a grade; unknown grades get the lowest tier."""
        policy = self._by_grade.get(grade)
        if policy is None:
            logger.warning(f"Unknown grade {grade!r}, using {self.lowest.grade!r} policy")
            return self.lowest
        return policy

    def is_lowest(self, grade: str) -> bool:
        return self.policy_for(grade).grade == self.lowest.grade

    def downgrade_models(self, grade: str) -> list[ModelMeta]:
        """
        Models of every strictly lower tier, nearest tier first.

        For the lowest grade this is always empty.
        """
        policy = self.policy_for(grade)
        position = self._tiers.index(policy)
        models: list[ModelMeta] = []
        for tier in reversed(self._tiers[:position]):
            models.extend(tier.models)
        return models


def _usage(vision: tuple[int, int], dialer: tuple[int, int], whisper: tuple[int, int]):
    return {
        UsageKind.VISION: UsageCeiling(daily=vision[0], monthly=vision[1]),
        UsageKind.DIALER: UsageCeiling(daily=dialer[0], monthly=dialer[1]),
        UsageKind.WHISPER: UsageCeiling(daily=whisper[0], monthly=whisper[1]),
    }


def default_tiers() -> list[TierPolicy]:
    """Bronze/silver/gold defaults used when no TIERS override is configured."""
    return [
        TierPolicy(
            grade="bronze",
            display_name="Bronze",
            models=[
                ModelMeta(name="anthropic/claude-3.5-sonnet", aai=75, input_price_per_m="$3",
                          output_price_per_m="$15", ctx_tokens="200k"),
                ModelMeta(name="openai/gpt-4.1", aai=80, input_price_per_m="$2.5",
                          output_price_per_m="$10", ctx_tokens="128k"),
                ModelMeta(name="google/gemini-2.5-flash", aai=70, input_price_per_m="$0.075",
                          output_price_per_m="$0.3", ctx_tokens="1M"),
            ],
            default_effort="medium",
            context=ContextLimits(max_turns=25, max_tokens=40_000, ttl_seconds=1800),
            usage=_usage(vision=(3, 20), dialer=(40, 300), whisper=(15, 70)),
            spending=SpendCeiling(daily=Decimal("2.0"), monthly=Decimal("7.0")),
        ),
        TierPolicy(
            grade="silver",
            display_name="Silver",
            models=[
                ModelMeta(name="google/gemini-2.5-pro", aai=85, input_price_per_m="$1.25",
                          output_price_per_m="$5", ctx_tokens="2M"),
                ModelMeta(name="anthropic/claude-3.7-sonnet", aai=87, input_price_per_m="$3",
                          output_price_per_m="$15", ctx_tokens="200k"),
                ModelMeta(name="x-ai/grok-3", aai=83, input_price_per_m="$2",
                          output_price_per_m="$10", ctx_tokens="128k"),
                ModelMeta(name="openai/gpt-4.1", aai=80, input_price_per_m="$2.5",
                          output_price_per_m="$10", ctx_tokens="128k"),
                ModelMeta(name="x-ai/grok-4", aai=88, input_price_per_m="$5",
                          output_price_per_m="$15", ctx_tokens="128k"),
            ],
            default_effort="medium",
            context=ContextLimits(max_turns=40, max_tokens=70_000, ttl_seconds=7200),
            usage=_usage(vision=(7, 35), dialer=(150, 600), whisper=(30, 170)),
            spending=SpendCeiling(daily=Decimal("3.7"), monthly=Decimal("15.0")),
        ),
        TierPolicy(
            grade="gold",
            display_name="Gold",
            models=[
                ModelMeta(name="anthropic/claude-sonnet-4.5", aai=95, input_price_per_m="$15",
                          output_price_per_m="$75", ctx_tokens="400k"),
                ModelMeta(name="anthropic/claude-sonnet-4", aai=93, input_price_per_m="$12",
                          output_price_per_m="$60", ctx_tokens="200k"),
                ModelMeta(name="openai/gpt-5", aai=92, input_price_per_m="$10",
                          output_price_per_m="$30", ctx_tokens="256k"),
                ModelMeta(name="google/gemini-2.5-pro", aai=85, input_price_per_m="$1.25",
                          output_price_per_m="$5", ctx_tokens="2M"),
                ModelMeta(name="anthropic/claude-3.7-sonnet", aai=87, input_price_per_m="$3",
                          output_price_per_m="$15", ctx_tokens="200k"),
                ModelMeta(name="openai/gpt-4.1", aai=80, input_price_per_m="$2.5",
                          output_price_per_m="$10", ctx_tokens="128k"),
            ],
            default_effort="high",
            context=ContextLimits(max_turns=60, max_tokens=160_000, ttl_seconds=21600),
            usage=_usage(vision=(20, 100), dialer=(300, 1500), whisper=(140, 300)),
            spending=SpendCeiling(daily=Decimal("5.0"), monthly=Decimal("26.0")),
        ),
    ]
