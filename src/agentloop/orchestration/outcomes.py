"""Per-turn outcomes produced by the stream interpreter.

Each model turn reduces to exactly one of these variants. The driver matches
on the variant to pick its next step and then discards it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .errors import ClassifiedError
from .types import FunctionCall, GroundingMetadata

__all__ = [
    "AppendToolResults",
    "ContinueEditedPlan",
    "ContinueTruncated",
    "Complete",
    "Failed",
    "Aborted",
    "TurnOutcome",
]


@dataclass(slots=True, frozen=True)
class AppendToolResults:
    """The model requested tools; results must be fed back before the next turn.

    Attributes:
        text: Text the model produced alongside the calls.
        calls: Requested calls in arrival order.
    """

    text: str
    calls: tuple[FunctionCall, ...]


@dataclass(slots=True, frozen=True)
class ContinueEditedPlan:
    """The plan gate approved a plan; ``text`` is the (possibly edited) plan."""

    text: str


@dataclass(slots=True, frozen=True)
class ContinueTruncated:
    """The turn was cut off and the model should keep writing.

    Attributes:
        turn_text: This turn's text with the continuation sentinel removed.
        accumulated_text: Prior carried text followed by ``turn_text``.
    """

    turn_text: str
    accumulated_text: str


@dataclass(slots=True, frozen=True)
class Complete:
    """The model finished naturally."""

    text: str
    grounding: GroundingMetadata | None = None


@dataclass(slots=True, frozen=True)
class Failed:
    """The turn failed with a provider or stream error."""

    error: ClassifiedError


@dataclass(slots=True, frozen=True)
class Aborted:
    """The turn stopped because of cancellation or a rejected plan."""

    reason: str = "cancelled"


TurnOutcome = Union[
    AppendToolResults,
    ContinueEditedPlan,
    ContinueTruncated,
    Complete,
    Failed,
    Aborted,
]
