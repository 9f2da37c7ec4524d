"""
Data models and exceptions for the LLM layer.

Request/response types shared by provider adapters, the router and the
orchestrator. Everything here is a plain Pydantic model so it can be logged
and asserted on without touching a live backend.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from convoroute.config.tiers import UsageKind
from convoroute.context.models import ConversationTurn


class LLMError(Exception):
    """
    Raised when a primary generation call fails.

    Carries the underlying exception as ``cause`` so callers can log or
    inspect it without parsing the message.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class EmptyResponseError(LLMError):
    """Raised when a backend answered but returned no completion choice."""


class OrchestrationError(Exception):
    """Raised when a turn cannot be orchestrated at all (e.g. no active mode)."""


class TokenUsage(BaseModel):
    """Token counts reported by the backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class GenerationParams(BaseModel):
    """
    Optional sampling parameters.

    This is a superset bundle: each adapter forwards the fields its backend
    understands and drops the rest.
    """

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None

    def provided(self) -> dict[str, float | int]:
        """Only the parameters that were actually set."""
        return self.model_dump(exclude_none=True)


class ConversationMode(BaseModel):
    """The active persona/mode of a conversation: its system prompt and sampling."""

    name: str
    prompt: str
    params: GenerationParams | None = None
    final: bool = False


class InboundTurn(BaseModel):
    """One user message arriving from the transport layer."""

    conversation_id: int
    user_id: int
    grade: str
    text: str
    persona: str = ""
    usage_kind: UsageKind = UsageKind.DIALER
    stackful: bool = Field(
        default=True, description="Whether the turn reads and writes conversation history"
    )


class ProviderRequest(BaseModel):
    """Everything an adapter needs for one completion call."""

    system_prompt: str
    history: list[ConversationTurn] = Field(default_factory=list)
    text: str
    params: GenerationParams | None = None
    model: str | None = Field(
        default=None,
        description="Model chosen by the model-selection agent, provider-qualified",
    )
    reasoning_effort: str | None = None
    timeout: float | None = None

    model_config = ConfigDict(protected_namespaces=())


class ProviderReply(BaseModel):
    """
    Result of one adapter call.

    ``text`` is the first choice's content, or None when the backend sent no
    choices at all. Deciding whether that is an error belongs to the caller.
    """

    text: str | None
    model: str = ""
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: Decimal = Decimal("0")


class TurnState(str, Enum):
    """Per-turn orchestration state, logged at each transition."""

    IDLE = "idle"
    RESOLVING_CONTEXT = "resolving_context"
    DISPATCHING = "dispatching"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    PERSISTING = "persisting"
    DONE = "done"


class TurnResponse(BaseModel):
    """Structured result of an orchestrated turn."""

    text: str
    provider: str
    model: str
    reasoning_effort: str | None = None
    attempts: int = Field(ge=1)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: Decimal = Decimal("0")
    limit_notice: str | None = Field(
        default=None,
        description="Set when the turn was degraded because a spending limit was hit",
    )
