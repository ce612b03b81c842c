"""Continuation policy: what the driver does after a model turn.

Priority is fixed: tool calls, then truncation, then an unapproved plan,
then completion. A turn that both requests tools and looks truncated is a
tool-call turn.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .plan import has_plan_marker
from .types import FinishReason, FunctionCall

__all__ = [
    "CONTINUATION_SENTINEL",
    "NextAction",
    "TurnSummary",
    "decide",
    "has_sentinel",
    "strip_sentinel",
]

CONTINUATION_SENTINEL = "[AUTO_CONTINUE]"

_SENTINEL_PATTERN = re.compile(re.escape(CONTINUATION_SENTINEL))


class NextAction(str, Enum):
    APPEND_TOOL_RESULTS = "append_tool_results"
    CONTINUE_TRUNCATED = "continue_truncated"
    AWAIT_PLAN_APPROVAL = "await_plan_approval"
    COMPLETE = "complete"


@dataclass(slots=True, frozen=True)
class TurnSummary:
    """What the interpreter saw in one exhausted fragment stream.

    Attributes:
        text: Text of this turn only.
        calls: Function calls in arrival order.
        finish_reason: Finish reason from the final fragment, if any.
        plan_gate_open: True when the run gates plans and none was approved yet.
    """

    text: str
    calls: tuple[FunctionCall, ...] = ()
    finish_reason: FinishReason | None = None
    plan_gate_open: bool = False


def has_sentinel(text: str) -> bool:
    return CONTINUATION_SENTINEL in text


def strip_sentinel(text: str) -> str:
    """Remove every continuation sentinel; surrounding text is left intact."""
    return _SENTINEL_PATTERN.sub("", text)


def decide(turn: TurnSummary) -> NextAction:
    """Classify a finished turn into exactly one next action."""
    if turn.calls:
        return NextAction.APPEND_TOOL_RESULTS
    if has_sentinel(turn.text) or turn.finish_reason is FinishReason.MAX_TOKENS:
        return NextAction.CONTINUE_TRUNCATED
    if turn.plan_gate_open and has_plan_marker(turn.text):
        return NextAction.AWAIT_PLAN_APPROVAL
    return NextAction.COMPLETE
