"""
Context Window Manager.

Keeps a bounded, token-budgeted conversation log per conversation in Redis.

Storage layout:
    chat_history:{conversation_id}          list of JSON turns, newest first
    chat_context_enabled:{conversation_id}  "0" when history is switched off

Every write pushes the new turn to the head of the list, trims it to the
grade's turn limit and refreshes the expiry, all inside one MULTI block.
The token budget is applied on read: fetch() walks newest to oldest and stops
at the first turn that would overflow it, so the returned view always holds
the most recent turns that fit.
"""

from __future__ import annotations

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from convoroute.config.logging import get_logger
from convoroute.config.tiers import PolicySet
from convoroute.context.models import ContextStats, ContextStoreError, ConversationTurn
from convoroute.context.tokenizer import Tokenizer

logger = get_logger(__name__)


def history_key(conversation_id: int) -> str:
    return f"chat_history:{conversation_id}"


def enabled_key(conversation_id: int) -> str:
    return f"chat_context_enabled:{conversation_id}"


class ContextWindowManager:
    """
    Bounded conversation history backed by a Redis list.

    Args:
        redis: Async Redis client created with ``decode_responses=True``
        tokenizer: Token counter used for the per-grade token budget
        policies: Tier policies providing the context limits for each grade
    """

    def __init__(self, redis: Redis, tokenizer: Tokenizer, policies: PolicySet):
        self._redis = redis
        self._tokenizer = tokenizer
        self._policies = policies

    async def fetch(self, conversation_id: int, grade: str) -> list[ConversationTurn]:
        """
        Return the most recent turns that fit the grade's limits, oldest first.

        Raises:
            ContextStoreError: If the log cannot be read
        """
        if not await self.is_enabled(conversation_id):
            logger.info(f"Context disabled for conversation {conversation_id}, returning empty")
            return []

        limits = self._policies.policy_for(grade).context
        key = history_key(conversation_id)

        try:
            raw_entries = await self._redis.lrange(key, 0, limits.max_turns - 1)
        except (RedisError, OSError) as e:
            logger.error(f"Failed to fetch chat history '{key}': {e}")
            raise ContextStoreError(f"Failed to fetch chat history: {e}", cause=e) from e

        turns, skipped = self._decode(raw_entries)
        if skipped:
            logger.warning(f"Skipped {skipped} corrupt entries in '{key}'")

        # Newest first: keep turns until the next one would overflow the budget
        selected: list[ConversationTurn] = []
        total_tokens = 0
        for turn in turns:
            tokens = self._tokenizer.count(turn.text)
            if total_tokens + tokens > limits.max_tokens:
                break
            total_tokens += tokens
            selected.append(turn)

        selected.reverse()
        logger.debug(
            f"Fetched {len(selected)}/{len(raw_entries)} turns for conversation "
            f"{conversation_id} ({total_tokens}/{limits.max_tokens} tokens)"
        )
        return selected

    async def store(self, conversation_id: int, grade: str, turn: ConversationTurn) -> None:
        """
        Append a turn, evicting the oldest turns beyond the grade's turn limit.

        Raises:
            ContextStoreError: If the write transaction fails
        """
        if not await self.is_enabled(conversation_id):
            logger.info(f"Context disabled for conversation {conversation_id}, skipping store")
            return

        limits = self._policies.policy_for(grade).context
        key = history_key(conversation_id)
        payload = turn.model_dump_json()
        tokens = self._tokenizer.count(turn.text)

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lpush(key, payload)
                pipe.ltrim(key, 0, limits.max_turns - 1)
                pipe.expire(key, limits.ttl_seconds)
                await pipe.execute()
        except (RedisError, OSError) as e:
            logger.error(f"Failed to store turn in '{key}': {e}")
            raise ContextStoreError(f"Failed to store turn: {e}", cause=e) from e

        logger.debug(
            f"Stored {turn.role} turn for conversation {conversation_id} "
            f"({tokens} tokens, ttl {limits.ttl_seconds}s)"
        )

    async def clear(self, conversation_id: int) -> None:
        """Delete the conversation log."""
        key = history_key(conversation_id)
        try:
            await self._redis.delete(key)
        except (RedisError, OSError) as e:
            logger.error(f"Failed to clear chat history '{key}': {e}")
            raise ContextStoreError(f"Failed to clear chat history: {e}", cause=e) from e
        logger.info(f"Cleared chat history for conversation {conversation_id}")

    async def set_enabled(self, conversation_id: int, enabled: bool) -> None:
        """Switch history collection on or off. Enabled is the default state."""
        key = enabled_key(conversation_id)
        try:
            if enabled:
                await self._redis.delete(key)
            else:
                await self._redis.set(key, "0")
        except (RedisError, OSError) as e:
            logger.error(f"Failed to update context flag '{key}': {e}")
            raise ContextStoreError(f"Failed to update context flag: {e}", cause=e) from e

    async def is_enabled(self, conversation_id: int) -> bool:
        """Missing flag or an unreadable store both count as enabled."""
        try:
            value = await self._redis.get(enabled_key(conversation_id))
        except (RedisError, OSError) as e:
            logger.warning(f"Failed to read context flag for {conversation_id}: {e}")
            return True
        return value != "0"

    async def get_stats(self, conversation_id: int, grade: str) -> ContextStats:
        """Current log size (as fetch() would return it) against the grade's limits."""
        limits = self._policies.policy_for(grade).context
        enabled = await self.is_enabled(conversation_id)
        turns = await self.fetch(conversation_id, grade) if enabled else []
        return ContextStats(
            enabled=enabled,
            current_turns=len(turns),
            max_turns=limits.max_turns,
            current_tokens=sum(self._tokenizer.count(turn.text) for turn in turns),
            max_tokens=limits.max_tokens,
        )

    @staticmethod
    def _decode(raw_entries: list[str]) -> tuple[list[ConversationTurn], int]:
        turns: list[ConversationTurn] = []
        skipped = 0
        for raw in raw_entries:
            try:
                turns.append(ConversationTurn.model_validate_json(raw))
            except ValidationError:
                skipped += 1
        return turns, skipped
