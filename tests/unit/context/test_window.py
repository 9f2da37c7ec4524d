"""
Unit tests for ContextWindowManager.

Uses an in-process fake Redis and a whitespace tokenizer so turn and token
budgets are easy to reason about:
- fetch() respects max_turns and max_tokens and returns oldest first
- store() trims and refreshes expiry
- corrupt entries are skipped
- the per-conversation enable flag
"""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from convoroute.config.tiers import ContextLimits, PolicySet, default_tiers
from convoroute.context.models import ContextStoreError, ConversationTurn
from convoroute.context.window import ContextWindowManager, enabled_key, history_key


def _policies(max_turns: int = 25, max_tokens: int = 40_000, ttl: int = 1800) -> PolicySet:
    tiers = default_tiers()
    tiers[0] = tiers[0].model_copy(
        update={"context": ContextLimits(max_turns=max_turns, max_tokens=max_tokens, ttl_seconds=ttl)}
    )
    return PolicySet(tiers)


async def _store_texts(manager: ContextWindowManager, texts: list[str], grade: str = "bronze"):
    for i, text in enumerate(texts):
        turn = ConversationTurn.user(text) if i % 2 == 0 else ConversationTurn.assistant(text)
        await manager.store(1, grade, turn)


# ---------------------------------------------------------------------------
# fetch / store
# ---------------------------------------------------------------------------

class TestFetchAndStore:

    @pytest.mark.asyncio
    async def test_empty_log_returns_empty(self, redis, tokenizer, policies):
        manager = ContextWindowManager(redis, tokenizer, policies)
        assert await manager.fetch(1, "bronze") == []

    @pytest.mark.asyncio
    async def test_fetch_returns_chronological_order(self, redis, tokenizer, policies):
        manager = ContextWindowManager(redis, tokenizer, policies)
        await _store_texts(manager, ["first", "second", "third"])

        turns = await manager.fetch(1, "bronze")

        assert [t.text for t in turns] == ["first", "second", "third"]
        assert [t.role for t in turns] == ["user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_store_trims_to_max_turns(self, redis, tokenizer):
        manager = ContextWindowManager(redis, tokenizer, _policies(max_turns=3))
        await _store_texts(manager, ["t1", "t2", "t3", "t4", "t5"])

        assert await redis.llen(history_key(1)) == 3
        turns = await manager.fetch(1, "bronze")
        assert [t.text for t in turns] == ["t3", "t4", "t5"]

    @pytest.mark.asyncio
    async def test_store_sets_expiry(self, redis, tokenizer):
        manager = ContextWindowManager(redis, tokenizer, _policies(ttl=120))
        await _store_texts(manager, ["hello"])

        ttl = await redis.ttl(history_key(1))
        assert 0 < ttl <= 120

    @pytest.mark.asyncio
    async def test_token_budget_keeps_newest_turns(self, redis, tokenizer):
        manager = ContextWindowManager(redis, tokenizer, _policies(max_tokens=5))
        await _store_texts(manager, ["one two three", "four five", "six seven"])

        turns = await manager.fetch(1, "bronze")

        # newest (2) + middle (2) = 4 fits, adding the oldest (3) would be 7
        assert [t.text for t in turns] == ["four five", "six seven"]

    @pytest.mark.asyncio
    async def test_token_budget_stops_at_first_overflow(self, redis, tokenizer):
        manager = ContextWindowManager(redis, tokenizer, _policies(max_tokens=4))
        await _store_texts(manager, ["a", "b c d e f", "g h"])

        turns = await manager.fetch(1, "bronze")

        # "a" would still fit after "g h", but nothing older than an overflow is kept
        assert [t.text for t in turns] == ["g h"]

    @pytest.mark.asyncio
    async def test_oversized_newest_turn_yields_empty(self, redis, tokenizer):
        manager = ContextWindowManager(redis, tokenizer, _policies(max_tokens=2))
        await _store_texts(manager, ["short", "this one is far too long"])

        assert await manager.fetch(1, "bronze") == []

    @pytest.mark.asyncio
    async def test_fetched_view_never_exceeds_limits(self, redis, tokenizer):
        manager = ContextWindowManager(redis, tokenizer, _policies(max_turns=6, max_tokens=10))
        await _store_texts(manager, [" ".join(["w"] * (i % 4 + 1)) for i in range(20)])

        turns = await manager.fetch(1, "bronze")

        assert len(turns) <= 6
        assert sum(tokenizer.count(t.text) for t in turns) <= 10

    @pytest.mark.asyncio
    async def test_corrupt_entries_are_skipped(self, redis, tokenizer, policies):
        manager = ContextWindowManager(redis, tokenizer, policies)
        await _store_texts(manager, ["good one"])
        await redis.lpush(history_key(1), "{not json")
        await redis.lpush(history_key(1), '{"role": "system", "text": "bad role"}')
        await _store_texts(manager, ["good two"])

        turns = await manager.fetch(1, "bronze")

        assert [t.text for t in turns] == ["good one", "good two"]

    @pytest.mark.asyncio
    async def test_grade_limits_are_applied(self, redis, tokenizer, policies):
        manager = ContextWindowManager(redis, tokenizer, policies)
        await _store_texts(manager, [f"turn {i}" for i in range(30)], grade="gold")

        bronze_view = await manager.fetch(1, "bronze")
        gold_view = await manager.fetch(1, "gold")

        assert len(bronze_view) == 25
        assert len(gold_view) == 30


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestStoreFailures:

    @pytest.mark.asyncio
    async def test_fetch_failure_raises_context_store_error(self, tokenizer, policies):
        redis = AsyncMock()
        redis.get.return_value = None
        redis.lrange.side_effect = RedisConnectionError("down")
        manager = ContextWindowManager(redis, tokenizer, policies)

        with pytest.raises(ContextStoreError) as exc_info:
            await manager.fetch(1, "bronze")

        assert isinstance(exc_info.value.cause, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_clear_failure_raises_context_store_error(self, tokenizer, policies):
        redis = AsyncMock()
        redis.delete.side_effect = RedisConnectionError("down")
        manager = ContextWindowManager(redis, tokenizer, policies)

        with pytest.raises(ContextStoreError):
            await manager.clear(1)


# ---------------------------------------------------------------------------
# clear / enable flag / stats
# ---------------------------------------------------------------------------

class TestClearAndFlags:

    @pytest.mark.asyncio
    async def test_clear_deletes_log(self, redis, tokenizer, policies):
        manager = ContextWindowManager(redis, tokenizer, policies)
        await _store_texts(manager, ["hello", "hi"])

        await manager.clear(1)

        assert await redis.exists(history_key(1)) == 0
        assert await manager.fetch(1, "bronze") == []

    @pytest.mark.asyncio
    async def test_enabled_by_default(self, redis, tokenizer, policies):
        manager = ContextWindowManager(redis, tokenizer, policies)
        assert await manager.is_enabled(1) is True

    @pytest.mark.asyncio
    async def test_disabled_context_skips_store_and_fetch(self, redis, tokenizer, policies):
        manager = ContextWindowManager(redis, tokenizer, policies)
        await _store_texts(manager, ["kept"])

        await manager.set_enabled(1, False)
        await _store_texts(manager, ["dropped"])

        assert await redis.get(enabled_key(1)) == "0"
        assert await redis.llen(history_key(1)) == 1
        assert await manager.fetch(1, "bronze") == []

    @pytest.mark.asyncio
    async def test_reenable_removes_flag(self, redis, tokenizer, policies):
        manager = ContextWindowManager(redis, tokenizer, policies)
        await manager.set_enabled(1, False)

        await manager.set_enabled(1, True)

        assert await redis.exists(enabled_key(1)) == 0
        assert await manager.is_enabled(1) is True

    @pytest.mark.asyncio
    async def test_unreadable_flag_counts_as_enabled(self, tokenizer, policies):
        redis = AsyncMock()
        redis.get.side_effect = RedisConnectionError("down")
        manager = ContextWindowManager(redis, tokenizer, policies)

        assert await manager.is_enabled(1) is True

    @pytest.mark.asyncio
    async def test_stats(self, redis, tokenizer, policies):
        manager = ContextWindowManager(redis, tokenizer, policies)
        await _store_texts(manager, ["one two", "three"])

        stats = await manager.get_stats(1, "bronze")

        assert stats.enabled is True
        assert stats.current_turns == 2
        assert stats.current_tokens == 3
        assert stats.max_turns == 25
        assert stats.max_tokens == 40_000

    @pytest.mark.asyncio
    async def test_stats_when_disabled(self, redis, tokenizer, policies):
        manager = ContextWindowManager(redis, tokenizer, policies)
        await _store_texts(manager, ["one two"])
        await manager.set_enabled(1, False)

        stats = await manager.get_stats(1, "bronze")

        assert stats.enabled is False
        assert stats.current_turns == 0
