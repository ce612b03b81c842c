"""Tests for orchestration/policy.py."""

from __future__ import annotations

import pytest

from agentloop.orchestration.plan import PLAN_MARKER
from agentloop.orchestration.policy import (
    CONTINUATION_SENTINEL,
    NextAction,
    TurnSummary,
    decide,
    has_sentinel,
    strip_sentinel,
)
from agentloop.orchestration.types import FinishReason, FunctionCall

CALL = FunctionCall(name="calculator", args={"expression": "2+2"})


class TestSentinel:
    """Tests for sentinel helpers."""

    def test_has_sentinel(self) -> None:
        assert has_sentinel(f"Chapter 1... {CONTINUATION_SENTINEL}")
        assert not has_sentinel("Chapter 1...")

    def test_strip_sentinel_removes_every_occurrence(self) -> None:
        text = f"a{CONTINUATION_SENTINEL}b{CONTINUATION_SENTINEL}"
        assert strip_sentinel(text) == "ab"


class TestDecide:
    """Tests for decide()."""

    def test_plain_text_completes(self) -> None:
        assert decide(TurnSummary(text="4", finish_reason=FinishReason.STOP)) is NextAction.COMPLETE

    def test_calls_take_priority(self) -> None:
        turn = TurnSummary(
            text=f"partial {CONTINUATION_SENTINEL} {PLAN_MARKER}",
            calls=(CALL,),
            finish_reason=FinishReason.MAX_TOKENS,
            plan_gate_open=True,
        )
        assert decide(turn) is NextAction.APPEND_TOOL_RESULTS

    def test_sentinel_means_truncated(self) -> None:
        turn = TurnSummary(text=f"Chapter 1... {CONTINUATION_SENTINEL}", finish_reason=FinishReason.STOP)
        assert decide(turn) is NextAction.CONTINUE_TRUNCATED

    def test_max_tokens_means_truncated(self) -> None:
        turn = TurnSummary(text="Chapter 1...", finish_reason=FinishReason.MAX_TOKENS)
        assert decide(turn) is NextAction.CONTINUE_TRUNCATED

    def test_truncation_beats_plan(self) -> None:
        turn = TurnSummary(
            text=f"Plan {PLAN_MARKER} {CONTINUATION_SENTINEL}",
            plan_gate_open=True,
        )
        assert decide(turn) is NextAction.CONTINUE_TRUNCATED

    def test_plan_with_open_gate(self) -> None:
        turn = TurnSummary(text=f"Plan: A, B {PLAN_MARKER}", plan_gate_open=True)
        assert decide(turn) is NextAction.AWAIT_PLAN_APPROVAL

    def test_plan_with_closed_gate_completes(self) -> None:
        turn = TurnSummary(text=f"Plan: A, B {PLAN_MARKER}", plan_gate_open=False)
        assert decide(turn) is NextAction.COMPLETE

    @pytest.mark.parametrize(
        "finish_reason",
        [None, FinishReason.STOP, FinishReason.OTHER],
    )
    def test_other_finish_reasons_complete(self, finish_reason: FinishReason | None) -> None:
        assert decide(TurnSummary(text="done", finish_reason=finish_reason)) is NextAction.COMPLETE

    def test_empty_turn_completes(self) -> None:
        assert decide(TurnSummary(text="")) is NextAction.COMPLETE
