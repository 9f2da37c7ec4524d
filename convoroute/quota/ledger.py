"""
Usage counters.

Each user has a daily and a monthly request counter per usage kind:

    usage:{kind}:daily:{user_id}:{YYYY-MM-DD}    expires after 25h
    usage:{kind}:monthly:{user_id}:{YYYY-MM}     expires after 32d

The check and the increment run as one Lua script on the Redis server, so
two concurrent turns can never both pass a check that only one of them
should pass. When Redis is unreachable the limiter fails open and logs
the error.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from redis.asyncio import Redis
from redis.exceptions import RedisError

from convoroute.config.logging import get_logger
from convoroute.config.tiers import PolicySet, UsageKind
from convoroute.quota.models import QuotaDecision, UsageSnapshot

logger = get_logger(__name__)

DAILY_USAGE_TTL = 25 * 60 * 60
MONTHLY_USAGE_TTL = 32 * 24 * 60 * 60

Clock = Callable[[], datetime]

# KEYS: daily, monthly. ARGV: daily limit, monthly limit, daily ttl, monthly ttl.
# Returns {allowed, rejected_by (0 none, 1 daily, 2 monthly), daily, monthly}.
_CHECK_AND_CONSUME_SCRIPT = """
local daily = tonumber(redis.call('GET', KEYS[1]) or '0')
local monthly = tonumber(redis.call('GET', KEYS[2]) or '0')

if monthly >= tonumber(ARGV[2]) then
    return {0, 2, daily, monthly}
end
if daily >= tonumber(ARGV[1]) then
    return {0, 1, daily, monthly}
end

daily = redis.call('INCR', KEYS[1])
monthly = redis.call('INCR', KEYS[2])
redis.call('EXPIRE', KEYS[1], ARGV[3])
redis.call('EXPIRE', KEYS[2], ARGV[4])

return {1, 0, daily, monthly}
"""


def utc_now() -> datetime:
    return datetime.now(UTC)


def period_key(period: str, now: datetime) -> str:
    """Calendar bucket for a period: ``YYYY-MM-DD`` (daily) or ``YYYY-MM`` (monthly)."""
    if period == "daily":
        return now.strftime("%Y-%m-%d")
    if period == "monthly":
        return now.strftime("%Y-%m")
    raise ValueError(f"Invalid period: {period}")


def usage_key(kind: UsageKind, period: str, user_id: int, now: datetime) -> str:
    return f"usage:{kind.value}:{period}:{user_id}:{period_key(period, now)}"


class UsageLimiter:
    """
    Atomic daily/monthly request counters.

    Args:
        redis: Async Redis client (``decode_responses=True``)
        policies: Tier policies providing the ceilings per grade
        clock: Returns the current time; the calendar buckets follow it
    """

    def __init__(self, redis: Redis, policies: PolicySet, clock: Clock = utc_now):
        self._redis = redis
        self._policies = policies
        self._clock = clock
        self._script = redis.register_script(_CHECK_AND_CONSUME_SCRIPT)

    async def check_and_consume(
        self, user_id: int, grade: str, usage_kind: UsageKind
    ) -> QuotaDecision:
        """
        Count one request against the user's ceilings, or reject it.

        The monthly ceiling is checked before the daily one. A rejected
        request does not touch either counter.
        """
        ceiling = self._policies.policy_for(grade).usage_ceiling(usage_kind)
        now = self._clock()
        daily_key = usage_key(usage_kind, "daily", user_id, now)
        monthly_key = usage_key(usage_kind, "monthly", user_id, now)

        try:
            allowed, rejected_by, daily, monthly = await self._script(
                keys=[daily_key, monthly_key],
                args=[ceiling.daily, ceiling.monthly, DAILY_USAGE_TTL, MONTHLY_USAGE_TTL],
            )
        except (RedisError, OSError) as e:
            logger.error(f"Usage check failed for user {user_id}, allowing request: {e}")
            return QuotaDecision(
                allowed=True, daily_limit=ceiling.daily, monthly_limit=ceiling.monthly
            )

        decision = QuotaDecision(
            allowed=bool(allowed),
            limit_kind={1: "daily", 2: "monthly"}.get(int(rejected_by)),
            daily_count=int(daily),
            monthly_count=int(monthly),
            daily_limit=ceiling.daily,
            monthly_limit=ceiling.monthly,
        )

        if decision.allowed:
            logger.debug(
                f"Usage {usage_kind.value} for user {user_id} ({grade}): "
                f"daily {decision.daily_count}/{ceiling.daily}, "
                f"monthly {decision.monthly_count}/{ceiling.monthly}"
            )
        else:
            logger.info(
                f"Usage limit exceeded for user {user_id} ({grade}): "
                f"{decision.limit_kind} {usage_kind.value} limit reached"
            )
        return decision

    async def get_usage(self, user_id: int, usage_kind: UsageKind) -> UsageSnapshot:
        """Current counters without consuming anything."""
        now = self._clock()
        daily, monthly = await self._redis.mget(
            usage_key(usage_kind, "daily", user_id, now),
            usage_key(usage_kind, "monthly", user_id, now),
        )
        return UsageSnapshot(
            usage_kind=usage_kind,
            daily_count=int(daily or 0),
            monthly_count=int(monthly or 0),
        )
