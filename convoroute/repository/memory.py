"""
In-memory collaborators.

Used by the CLI and the test suite in place of the relational store.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from convoroute.llm.models import ConversationMode
from convoroute.repository.base import (
    DonationRepository,
    ModeRepository,
    PersonalizationRepository,
    UsageRepository,
)


class InMemoryModeRepository(ModeRepository):
    """Per-conversation modes with an optional default for unknown conversations."""

    def __init__(self, default: ConversationMode | None = None):
        self._default = default
        self._modes: dict[int, ConversationMode] = {}

    def set_mode(self, conversation_id: int, mode: ConversationMode) -> None:
        self._modes[conversation_id] = mode

    async def get_mode(self, conversation_id: int) -> ConversationMode | None:
        return self._modes.get(conversation_id, self._default)


class InMemoryDonationRepository(DonationRepository):
    def __init__(self, donors: set[int] | None = None):
        self._donors = set(donors or ())

    def add_donor(self, user_id: int) -> None:
        self._donors.add(user_id)

    async def has_donations(self, user_id: int) -> bool:
        return user_id in self._donors


@dataclass(frozen=True)
class UsageRecord:
    user_id: int
    conversation_id: int
    cost: Decimal
    tokens: int
    created_at: datetime


class InMemoryUsageRepository(UsageRepository):
    """Keeps every saved usage record in a list."""

    def __init__(self) -> None:
        self.records: list[UsageRecord] = []

    async def cost_since(self, user_id: int, since: datetime) -> Decimal:
        return sum(
            (r.cost for r in self.records if r.user_id == user_id and r.created_at >= since),
            Decimal("0"),
        )

    async def save_usage(
        self, user_id: int, conversation_id: int, cost: Decimal, tokens: int
    ) -> None:
        self.records.append(
            UsageRecord(
                user_id=user_id,
                conversation_id=conversation_id,
                cost=cost,
                tokens=tokens,
                created_at=datetime.now(UTC),
            )
        )


class InMemoryPersonalizationRepository(PersonalizationRepository):
    def __init__(self, entries: dict[int, str] | None = None):
        self._entries = dict(entries or {})

    async def get_personalization(self, user_id: int) -> str | None:
        return self._entries.get(user_id)
