"""
Collaborator interfaces (users, modes, donations, billing) and in-memory
implementations.
"""

from convoroute.repository.base import (
    DonationRepository,
    ModeRepository,
    PersonalizationRepository,
    UsageRepository,
)
from convoroute.repository.memory import (
    InMemoryDonationRepository,
    InMemoryModeRepository,
    InMemoryPersonalizationRepository,
    InMemoryUsageRepository,
)

__all__ = [
    "DonationRepository",
    "InMemoryDonationRepository",
    "InMemoryModeRepository",
    "InMemoryPersonalizationRepository",
    "InMemoryUsageRepository",
    "ModeRepository",
    "PersonalizationRepository",
    "UsageRepository",
]
