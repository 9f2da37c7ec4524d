"""
Collaborator interfaces.

Users, modes, donations and billing history live in a relational store
owned by another part of the system. The router only needs a handful of
queries from it, declared here as abstract classes. In-memory versions for
tests and the CLI are in ``convoroute.repository.memory``.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from convoroute.llm.models import ConversationMode


class ModeRepository(ABC):
    """Source of the active conversation mode (system prompt + sampling)."""

    @abstractmethod
    async def get_mode(self, conversation_id: int) -> ConversationMode | None:
        """Return the active mode, or None when the conversation has none."""
        pass


class DonationRepository(ABC):
    @abstractmethod
    async def has_donations(self, user_id: int) -> bool:
        pass


class UsageRepository(ABC):
    """Billing history of completed calls."""

    @abstractmethod
    async def cost_since(self, user_id: int, since: datetime) -> Decimal:
        """
        Sum of the user's call costs recorded at or after ``since``.

        Raises:
            Exception: Any storage failure; callers treat it as a soft error
        """
        pass

    @abstractmethod
    async def save_usage(
        self, user_id: int, conversation_id: int, cost: Decimal, tokens: int
    ) -> None:
        """Record one completed turn."""
        pass


class PersonalizationRepository(ABC):
    @abstractmethod
    async def get_personalization(self, user_id: int) -> str | None:
        """Free-form text the user asked to be taken into account, if any."""
        pass
