"""Core type definitions for the turn driver.

This module defines the conversation model (turns and parts), the fragments a
model provider streams back, the tool call events forwarded to callback sinks,
and the immutable generation settings validated once per run.
"""

from __future__ import annotations

import itertools
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Literal, Mapping, Union

from .errors import SettingsError
from .tools.types import ToolSpec

__all__ = [
    # Parts and turns
    "TextPart",
    "FunctionCallPart",
    "FunctionResultPart",
    "Part",
    "Turn",
    "TurnRole",
    "ConversationHistory",
    # Model stream
    "FunctionCall",
    "FinishReason",
    "SourceReference",
    "GroundingMetadata",
    "Fragment",
    # Tool events
    "ToolCallEvent",
    "IdGenerator",
    "uuid_ids",
    "MAX_CALL_ID_LENGTH",
    "SequentialIds",
    # Settings
    "GenerationSettings",
    "CONTINUE_PROMPT",
    "PLAN_APPROVED_PROMPT",
]

# Synthetic caller turns the driver appends between model requests
CONTINUE_PROMPT = "Continue"
PLAN_APPROVED_PROMPT = "The plan is approved. Proceed with execution."


# -----------------------------------------------------------------------------
# Helper
# -----------------------------------------------------------------------------


def _utcnow() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Function Calls
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class FunctionCall:
    """A tool invocation requested by the model.

    Attributes:
        name: Name of the requested tool.
        args: Structured arguments for the tool.
        id: Provider-assigned identifier, when the provider supplies one.
    """

    name: str
    args: Mapping[str, Any] = field(default_factory=dict)
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"name": self.name, "args": dict(self.args)}


# -----------------------------------------------------------------------------
# Parts and Turns
# -----------------------------------------------------------------------------

TurnRole = Literal["caller", "model"]


@dataclass(slots=True, frozen=True)
class TextPart:
    """Plain text content."""

    text: str


@dataclass(slots=True, frozen=True)
class FunctionCallPart:
    """A function call request carried by a model turn.

    Attributes:
        call: The requested call.
        call_id: Identifier of the ToolCallEvent created for this call.
    """

    call: FunctionCall
    call_id: str


@dataclass(slots=True, frozen=True)
class FunctionResultPart:
    """The answer to a function call, carried by a caller turn.

    Attributes:
        name: Name of the tool that produced the result.
        result: Textual result (or failure message) fed back to the model.
        call_id: Identifier of the call this part answers.
    """

    name: str
    result: str
    call_id: str


Part = Union[TextPart, FunctionCallPart, FunctionResultPart]


@dataclass(slots=True, frozen=True)
class Turn:
    """One role-tagged unit of conversation history."""

    role: TurnRole
    parts: tuple[Part, ...] = ()

    def __post_init__(self) -> None:
        if self.role not in ("caller", "model"):
            raise ValueError(f"Unknown turn role: {self.role!r}")
        if not isinstance(self.parts, tuple):
            object.__setattr__(self, "parts", tuple(self.parts))

    @classmethod
    def caller_text(cls, text: str) -> Turn:
        """Create a caller turn holding a single text part."""
        return cls(role="caller", parts=(TextPart(text),))

    @classmethod
    def model_text(cls, text: str) -> Turn:
        """Create a model turn holding a single text part."""
        return cls(role="model", parts=(TextPart(text),))

    @property
    def text(self) -> str:
        """Concatenated text of every text part."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def function_calls(self) -> tuple[FunctionCallPart, ...]:
        """Function call parts in order."""
        return tuple(p for p in self.parts if isinstance(p, FunctionCallPart))

    @property
    def function_results(self) -> tuple[FunctionResultPart, ...]:
        """Function result parts in order."""
        return tuple(p for p in self.parts if isinstance(p, FunctionResultPart))


class ConversationHistory:
    """Append-only ordered sequence of turns.

    The turn driver works on its own copy for the duration of one run; other
    components only read it through :attr:`turns`.
    """

    __slots__ = ("_turns",)

    def __init__(self, turns: Iterable[Turn] = ()) -> None:
        self._turns: list[Turn] = list(turns)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def extend(self, turns: Iterable[Turn]) -> None:
        for turn in turns:
            self.append(turn)

    def copy(self) -> ConversationHistory:
        return ConversationHistory(self._turns)

    @property
    def last(self) -> Turn | None:
        return self._turns[-1] if self._turns else None

    def has_unanswered_calls(self) -> bool:
        """Return True when the last turn is a model turn with pending calls."""
        last = self.last
        return last is not None and last.role == "model" and bool(last.function_calls)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(tuple(self._turns))

    def __getitem__(self, index: int) -> Turn:
        return self._turns[index]

    def __repr__(self) -> str:
        return f"ConversationHistory({len(self._turns)} turns)"


# -----------------------------------------------------------------------------
# Model Stream
# -----------------------------------------------------------------------------


class FinishReason(str, Enum):
    """Why the model ended its turn."""

    STOP = "stop"
    MAX_TOKENS = "max_tokens"
    SAFETY = "safety"
    OTHER = "other"


@dataclass(slots=True, frozen=True)
class SourceReference:
    """A source the model grounded its answer on."""

    uri: str
    title: str | None = None


@dataclass(slots=True, frozen=True)
class GroundingMetadata:
    """Grounding information surfaced with the final fragment."""

    sources: tuple[SourceReference, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.sources, tuple):
            object.__setattr__(self, "sources", tuple(self.sources))

    def to_dict(self) -> dict[str, Any]:
        return {"sources": [{"uri": s.uri, "title": s.title} for s in self.sources]}


@dataclass(slots=True, frozen=True)
class Fragment:
    """One incremental piece of a model turn.

    Attributes:
        text: Text delta, if any.
        function_calls: Function calls surfaced by this fragment.
        finish_reason: Set on the final fragment only.
        grounding: Optional grounding metadata (final fragment only).
    """

    text: str | None = None
    function_calls: tuple[FunctionCall, ...] = ()
    finish_reason: FinishReason | None = None
    grounding: GroundingMetadata | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.function_calls, tuple):
            object.__setattr__(self, "function_calls", tuple(self.function_calls))


# -----------------------------------------------------------------------------
# Tool Call Events
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolCallEvent:
    """Record of one requested tool invocation and its eventual result.

    Created by the driver when calls are extracted from a model turn. The
    dispatcher writes ``result`` and ``finished_at`` exactly once.
    """

    id: str
    call: FunctionCall
    result: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.result is not None

    @property
    def duration_ms(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def complete(self, result: str) -> None:
        """Attach the result and stamp the end time."""
        if self.result is not None:
            raise RuntimeError(f"Tool call event {self.id} already has a result")
        self.result = result
        self.finished_at = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "call": self.call.to_dict(),
            "result": self.result,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


IdGenerator = Callable[[FunctionCall], str]


# OpenAI rejects tool_call_id values longer than 40 characters
MAX_CALL_ID_LENGTH = 40
_ID_HEX_CHARS = 12


def uuid_ids(call: FunctionCall) -> str:
    """Default identifier source: ``<tool>-<12 hex chars>``, at most 40 characters.

    Long tool names are truncated in the prefix.
    """
    prefix = call.name[: MAX_CALL_ID_LENGTH - _ID_HEX_CHARS - 1]
    return f"{prefix}-{uuid.uuid4().hex[:_ID_HEX_CHARS]}"


class SequentialIds:
    """Deterministic identifier source producing ``<tool>-1``, ``<tool>-2``..."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def __call__(self, call: FunctionCall) -> str:
        with self._lock:
            value = next(self._counter)
        return f"{call.name}-{value}"


# -----------------------------------------------------------------------------
# Generation Settings
# -----------------------------------------------------------------------------


def _require_number(name: str, value: Any, kind: type, *, optional: bool = True) -> None:
    """Reject non-numeric values (including bools) before range checks run."""
    if value is None and optional:
        return
    allowed = (int, float) if kind is float else (int,)
    if isinstance(value, bool) or not isinstance(value, allowed):
        expected = "a number" if kind is float else "an integer"
        raise SettingsError(f"{name} must be {expected}, got {value!r}")


@dataclass(slots=True, frozen=True)
class GenerationSettings:
    """Immutable per-run configuration.

    Validated once at construction; the driver never mutates it.

    Attributes:
        temperature: Sampling temperature (0.0 to 2.0), None for provider default.
        max_output_tokens: Output token budget per model request.
        system_instruction: System prompt sent ahead of the history.
        tools: Tool declarations offered to the model.
        require_plan_approval: Whether the plan gate is enforced for this run.
        model: Optional model override passed to the provider.
        max_turns: Upper bound on model requests within one run.
    """

    temperature: float | None = None
    max_output_tokens: int | None = None
    system_instruction: str = ""
    tools: tuple[ToolSpec, ...] = ()
    require_plan_approval: bool = False
    model: str | None = None
    max_turns: int = 25

    def __post_init__(self) -> None:
        if not isinstance(self.tools, tuple):
            object.__setattr__(self, "tools", tuple(self.tools))
        _require_number("temperature", self.temperature, float)
        _require_number("max_output_tokens", self.max_output_tokens, int)
        _require_number("max_turns", self.max_turns, int, optional=False)
        if self.temperature is not None and not 0.0 <= self.temperature <= 2.0:
            raise SettingsError(f"temperature must be between 0.0 and 2.0, got {self.temperature}")
        if self.max_output_tokens is not None and self.max_output_tokens <= 0:
            raise SettingsError(
                f"max_output_tokens must be positive, got {self.max_output_tokens}"
            )
        if self.max_turns <= 0:
            raise SettingsError(f"max_turns must be positive, got {self.max_turns}")
        names = [spec.name for spec in self.tools]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise SettingsError(f"Duplicate tool declarations: {', '.join(duplicates)}")

    def with_updates(self, **kwargs: Any) -> GenerationSettings:
        """Return a new GenerationSettings with updated values."""
        current = {
            "temperature": self.temperature,
            "max_output_tokens": self.max_output_tokens,
            "system_instruction": self.system_instruction,
            "tools": self.tools,
            "require_plan_approval": self.require_plan_approval,
            "model": self.model,
            "max_turns": self.max_turns,
        }
        current.update(kwargs)
        return GenerationSettings(**current)
