"""
Conversation context.

Bounded, token-budgeted per-conversation history stored in Redis:

    Orchestrator → ContextWindowManager.fetch()  → recent turns within budget
    Orchestrator → ContextWindowManager.store()  → LPUSH + LTRIM + EXPIRE
"""

from convoroute.context.models import ContextStats, ContextStoreError, ConversationTurn
from convoroute.context.tokenizer import Tokenizer
from convoroute.context.window import ContextWindowManager

__all__ = [
    "ContextStats",
    "ContextStoreError",
    "ContextWindowManager",
    "ConversationTurn",
    "Tokenizer",
]
