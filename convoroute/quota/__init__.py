"""
Quota ledger.

Per-user request counters (UsageLimiter) and spend ceilings (SpendingLimiter),
both keyed by calendar day and month in Redis.
"""

from convoroute.quota.ledger import UsageLimiter
from convoroute.quota.models import (
    LimitExceededError,
    QuotaDecision,
    SpendingLimitExceeded,
    UsageLimitExceeded,
    UsageSnapshot,
)
from convoroute.quota.spending import SpendingLimiter

__all__ = [
    "LimitExceededError",
    "QuotaDecision",
    "SpendingLimitExceeded",
    "SpendingLimiter",
    "UsageLimitExceeded",
    "UsageLimiter",
    "UsageSnapshot",
]
