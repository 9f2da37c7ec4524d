"""
Quota decisions and limit exceptions.
"""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel

from convoroute.config.tiers import UsageKind

LimitKind = Literal["daily", "monthly"]


class QuotaDecision(BaseModel):
    """Outcome of one usage check. Counters are the values after the check."""

    allowed: bool
    limit_kind: LimitKind | None = None
    daily_count: int = 0
    monthly_count: int = 0
    daily_limit: int = 0
    monthly_limit: int = 0


class UsageSnapshot(BaseModel):
    """Read-only view of a user's counters for one usage kind."""

    usage_kind: UsageKind
    daily_count: int
    monthly_count: int


class LimitExceededError(Exception):
    """Base class for quota rejections."""

    def __init__(self, message: str, limit_kind: LimitKind):
        super().__init__(message)
        self.limit_kind = limit_kind


class UsageLimitExceeded(LimitExceededError):
    """A daily or monthly request counter is at its ceiling."""

    def __init__(self, usage_kind: UsageKind, limit_kind: LimitKind, count: int, limit: int):
        super().__init__(
            f"{limit_kind.capitalize()} {usage_kind.value} limit reached: {count}/{limit} requests",
            limit_kind,
        )
        self.usage_kind = usage_kind
        self.count = count
        self.limit = limit


class SpendingLimitExceeded(LimitExceededError):
    """A daily or monthly spend is above its ceiling."""

    def __init__(
        self,
        grade: str,
        limit_kind: LimitKind,
        limit_amount: Decimal,
        current_spend: Decimal,
    ):
        super().__init__(
            f"{limit_kind.capitalize()} spending limit exceeded for {grade}: "
            f"${current_spend:.2f} spent of ${limit_amount:.2f}",
            limit_kind,
        )
        self.grade = grade
        self.limit_amount = limit_amount
        self.current_spend = current_spend
