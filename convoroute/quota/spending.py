"""
Spending limits.

Spend is the sum of completed-call costs since the start of the day or
month. The authoritative numbers come from the UsageRepository; Redis keeps
a cached copy per calendar bucket that successful calls increment:

    spend:daily:{user_id}:{YYYY-MM-DD}      cached for 24h
    spend:monthly:{user_id}:{YYYY-MM}       cached for 31d
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation

from redis.asyncio import Redis
from redis.exceptions import RedisError

from convoroute.config.logging import get_logger
from convoroute.config.tiers import PolicySet
from convoroute.quota.ledger import Clock, period_key, utc_now
from convoroute.quota.models import SpendingLimitExceeded
from convoroute.repository.base import UsageRepository

logger = get_logger(__name__)

DAILY_SPEND_CACHE_TTL = 24 * 60 * 60
MONTHLY_SPEND_CACHE_TTL = 31 * 24 * 60 * 60
DAILY_SPEND_TTL = 25 * 60 * 60
MONTHLY_SPEND_TTL = 32 * 24 * 60 * 60

# Only bump buckets that are already cached; a missing bucket is rebuilt from
# the repository on the next read.
_INCREMENT_CACHED_SCRIPT = """
for i, key in ipairs(KEYS) do
    if redis.call('EXISTS', key) == 1 then
        redis.call('INCRBYFLOAT', key, ARGV[1])
        redis.call('EXPIRE', key, ARGV[i + 1])
    end
end
return 1
"""


def spend_key(period: str, user_id: int, now: datetime) -> str:
    return f"spend:{period}:{user_id}:{period_key(period, now)}"


def period_start(period: str, now: datetime) -> datetime:
    if period == "daily":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "monthly":
        return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    raise ValueError(f"Invalid period: {period}")


class SpendingLimiter:
    """
    Checks and records per-user spend against the grade's ceilings.

    Args:
        redis: Async Redis client (``decode_responses=True``)
        usage: Billing history used when the cache is cold
        policies: Tier policies providing the spend ceilings
        clock: Returns the current time
    """

    def __init__(
        self,
        redis: Redis,
        usage: UsageRepository,
        policies: PolicySet,
        clock: Clock = utc_now,
    ):
        self._redis = redis
        self._usage = usage
        self._policies = policies
        self._clock = clock
        self._increment = redis.register_script(_INCREMENT_CACHED_SCRIPT)

    async def check_spending_limits(self, user_id: int, grade: str) -> None:
        """
        Raise if the user already spent more than the grade allows.

        The daily ceiling is checked first. Spending exactly the ceiling is
        still allowed. When the spend cannot be determined at all, the turn
        is let through and the failure is logged.

        Raises:
            SpendingLimitExceeded: Daily or monthly spend is above its ceiling
        """
        policy = self._policies.policy_for(grade)
        now = self._clock()

        for period, limit in (
            ("daily", policy.spending.daily),
            ("monthly", policy.spending.monthly),
        ):
            try:
                spend = await self._get_spend(user_id, period, now)
            except Exception as e:
                logger.error(
                    f"Could not determine {period} spend for user {user_id}, allowing turn: {e}"
                )
                return

            if spend > limit:
                logger.info(
                    f"Spending limit exceeded for user {user_id} ({policy.grade}): "
                    f"{period} ${spend} > ${limit}"
                )
                raise SpendingLimitExceeded(policy.grade, period, limit, spend)

    async def add_spend(self, user_id: int, amount: Decimal) -> None:
        """Add a completed call's cost to the cached buckets. Never raises."""
        now = self._clock()
        try:
            await self._increment(
                keys=[spend_key("daily", user_id, now), spend_key("monthly", user_id, now)],
                args=[str(amount), DAILY_SPEND_TTL, MONTHLY_SPEND_TTL],
            )
        except (RedisError, OSError) as e:
            logger.error(f"Failed to increment spend for user {user_id} by {amount}: {e}")

    async def _get_spend(self, user_id: int, period: str, now: datetime) -> Decimal:
        key = spend_key(period, user_id, now)

        try:
            cached = await self._redis.get(key)
        except (RedisError, OSError) as e:
            logger.warning(f"Failed to read cached spend '{key}': {e}")
            cached = None

        if cached is not None:
            try:
                return Decimal(cached)
            except InvalidOperation:
                logger.warning(f"Unparseable cached spend '{key}'={cached!r}, reloading")

        spend = await self._usage.cost_since(user_id, period_start(period, now))

        ttl = DAILY_SPEND_CACHE_TTL if period == "daily" else MONTHLY_SPEND_CACHE_TTL
        try:
            await self._redis.set(key, str(spend), ex=ttl)
        except (RedisError, OSError) as e:
            logger.warning(f"Failed to cache spend '{key}': {e}")

        return spend
