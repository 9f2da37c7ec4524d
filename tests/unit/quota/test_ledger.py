"""
Unit tests for UsageLimiter.

The check-and-increment runs as a Lua script, executed here by fakeredis:
- the Nth request at a ceiling of N passes, the N+1th is rejected
- monthly is checked before daily
- rejections do not mutate counters
- Redis failures fail open
"""

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from convoroute.config.tiers import UsageKind
from convoroute.quota.ledger import (
    DAILY_USAGE_TTL,
    MONTHLY_USAGE_TTL,
    UsageLimiter,
    period_key,
    usage_key,
)

NOW = datetime(2025, 3, 14, 15, 9, tzinfo=UTC)


def _clock() -> datetime:
    return NOW


@pytest.fixture
def limiter(redis, policies):
    return UsageLimiter(redis, policies, clock=_clock)


class TestKeys:

    def test_period_keys(self):
        assert period_key("daily", NOW) == "2025-03-14"
        assert period_key("monthly", NOW) == "2025-03"

    def test_invalid_period(self):
        with pytest.raises(ValueError):
            period_key("weekly", NOW)

    def test_usage_key_layout(self):
        assert usage_key(UsageKind.VISION, "daily", 42, NOW) == "usage:vision:daily:42:2025-03-14"


class TestCheckAndConsume:

    @pytest.mark.asyncio
    async def test_first_request_increments_both_counters(self, limiter, redis):
        decision = await limiter.check_and_consume(7, "bronze", UsageKind.DIALER)

        assert decision.allowed is True
        assert decision.limit_kind is None
        assert decision.daily_count == 1
        assert decision.monthly_count == 1
        assert decision.daily_limit == 40
        assert decision.monthly_limit == 300
        assert await redis.get(usage_key(UsageKind.DIALER, "daily", 7, NOW)) == "1"

    @pytest.mark.asyncio
    async def test_expiry_is_set(self, limiter, redis):
        await limiter.check_and_consume(7, "bronze", UsageKind.DIALER)

        daily_ttl = await redis.ttl(usage_key(UsageKind.DIALER, "daily", 7, NOW))
        monthly_ttl = await redis.ttl(usage_key(UsageKind.DIALER, "monthly", 7, NOW))

        assert 0 < daily_ttl <= DAILY_USAGE_TTL
        assert DAILY_USAGE_TTL < monthly_ttl <= MONTHLY_USAGE_TTL

    @pytest.mark.asyncio
    async def test_request_at_ceiling_allowed_next_rejected(self, limiter):
        # bronze vision: 3 per day
        results = [await limiter.check_and_consume(7, "bronze", UsageKind.VISION) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[2].daily_count == 3
        assert results[3].limit_kind == "daily"

    @pytest.mark.asyncio
    async def test_rejection_does_not_mutate(self, limiter, redis):
        for _ in range(3):
            await limiter.check_and_consume(7, "bronze", UsageKind.VISION)

        await limiter.check_and_consume(7, "bronze", UsageKind.VISION)
        await limiter.check_and_consume(7, "bronze", UsageKind.VISION)

        assert await redis.get(usage_key(UsageKind.VISION, "daily", 7, NOW)) == "3"
        assert await redis.get(usage_key(UsageKind.VISION, "monthly", 7, NOW)) == "3"

    @pytest.mark.asyncio
    async def test_monthly_checked_before_daily(self, limiter, redis):
        await redis.set(usage_key(UsageKind.VISION, "daily", 7, NOW), 3)
        await redis.set(usage_key(UsageKind.VISION, "monthly", 7, NOW), 20)

        decision = await limiter.check_and_consume(7, "bronze", UsageKind.VISION)

        assert decision.allowed is False
        assert decision.limit_kind == "monthly"

    @pytest.mark.asyncio
    async def test_kinds_and_users_are_independent(self, limiter):
        for _ in range(3):
            await limiter.check_and_consume(7, "bronze", UsageKind.VISION)

        other_kind = await limiter.check_and_consume(7, "bronze", UsageKind.DIALER)
        other_user = await limiter.check_and_consume(8, "bronze", UsageKind.VISION)

        assert other_kind.allowed is True
        assert other_user.allowed is True

    @pytest.mark.asyncio
    async def test_higher_grade_has_higher_ceiling(self, limiter):
        results = [await limiter.check_and_consume(7, "gold", UsageKind.VISION) for _ in range(4)]
        assert all(r.allowed for r in results)

    @pytest.mark.asyncio
    async def test_concurrent_requests_never_exceed_ceiling(self, limiter, redis):
        results = await asyncio.gather(
            *(limiter.check_and_consume(7, "bronze", UsageKind.VISION) for _ in range(10))
        )

        assert sum(r.allowed for r in results) == 3
        assert await redis.get(usage_key(UsageKind.VISION, "daily", 7, NOW)) == "3"


class TestFailOpen:

    @pytest.mark.asyncio
    async def test_redis_failure_allows_request(self, policies):
        script = AsyncMock(side_effect=RedisConnectionError("down"))
        redis = MagicMock()
        redis.register_script.return_value = script
        limiter = UsageLimiter(redis, policies, clock=_clock)

        decision = await limiter.check_and_consume(7, "bronze", UsageKind.DIALER)

        assert decision.allowed is True
        assert decision.limit_kind is None

    @pytest.mark.asyncio
    async def test_timeout_allows_request(self, policies):
        script = AsyncMock(side_effect=TimeoutError())
        redis = MagicMock()
        redis.register_script.return_value = script
        limiter = UsageLimiter(redis, policies, clock=_clock)

        decision = await limiter.check_and_consume(7, "bronze", UsageKind.DIALER)

        assert decision.allowed is True


class TestGetUsage:

    @pytest.mark.asyncio
    async def test_reads_without_consuming(self, limiter):
        await limiter.check_and_consume(7, "bronze", UsageKind.WHISPER)
        await limiter.check_and_consume(7, "bronze", UsageKind.WHISPER)

        snapshot = await limiter.get_usage(7, UsageKind.WHISPER)
        again = await limiter.get_usage(7, UsageKind.WHISPER)

        assert snapshot.daily_count == 2
        assert snapshot.monthly_count == 2
        assert again == snapshot

    @pytest.mark.asyncio
    async def test_unknown_user_is_zero(self, limiter):
        snapshot = await limiter.get_usage(99, UsageKind.DIALER)
        assert snapshot.daily_count == 0
        assert snapshot.monthly_count == 0
