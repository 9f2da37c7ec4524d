"""
Agent decision types.
"""

from typing import Literal

from pydantic import BaseModel, Field

Complexity = Literal["low", "medium", "high"]


class ModelSelectionDecision(BaseModel):
    """
    Which model and effort a turn should run with.

    Produced per turn and validated against the tier policy before use;
    never persisted.
    """

    model: str
    reasoning_effort: str
    complexity: Complexity = "medium"
    requires_speed: bool = False
    requires_quality: bool = True
    is_trolling: bool = False
    temperature: float = Field(default=1.0, ge=0.0, le=2.0)
    rationale: str = ""


ResponseLength = Literal["very_brief", "brief", "medium", "detailed", "very_detailed"]
RESPONSE_LENGTHS: tuple[str, ...] = ("very_brief", "brief", "medium", "detailed", "very_detailed")


class ResponseLengthDecision(BaseModel):
    """How long the primary answer should be."""

    length: ResponseLength = "medium"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = ""
