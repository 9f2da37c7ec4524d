"""
Conversation data structures.

- ConversationTurn: one stored message (user or assistant)
- ContextStats: snapshot of a conversation log against its grade's limits
"""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]


class ConversationTurn(BaseModel):
    """
    One message of a conversation.

    Turns are immutable once created; the context window manager stores
    them as JSON and never edits them in place.
    """

    role: Role
    text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = ConfigDict(frozen=True)

    @classmethod
    def user(cls, text: str) -> "ConversationTurn":
        return cls(role="user", text=text)

    @classmethod
    def assistant(cls, text: str) -> "ConversationTurn":
        return cls(role="assistant", text=text)


class ContextStats(BaseModel):
    """Current size of a conversation log compared to its limits."""

    enabled: bool
    current_turns: int = Field(ge=0)
    max_turns: int
    current_tokens: int = Field(ge=0)
    max_tokens: int


class ContextStoreError(Exception):
    """Raised when the conversation log store cannot be read or written."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause
