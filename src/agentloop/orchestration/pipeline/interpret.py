"""Pipeline stage: Interpret.

Consumes one model turn's fragment stream and reduces it to a single
:data:`~agentloop.orchestration.outcomes.TurnOutcome`. The cancellation token
is checked before every fragment is handled, not only at stream start.
"""

from __future__ import annotations

import inspect
import logging
from typing import AsyncIterable, Callable

from ..cancellation import CancellationToken
from ..errors import ContentBlockedError, ErrorKind, classify_error
from ..outcomes import (
    Aborted,
    AppendToolResults,
    Complete,
    ContinueEditedPlan,
    ContinueTruncated,
    Failed,
    TurnOutcome,
)
from ..plan import PlanGate
from ..policy import NextAction, TurnSummary, decide, strip_sentinel
from ..types import FinishReason, Fragment, FunctionCall, GroundingMetadata

__all__ = ["interpret", "close_stream", "TextCallback"]

LOGGER = logging.getLogger(__name__)

# Called with prior carried text plus everything streamed so far this turn, sentinel removed
TextCallback = Callable[[str], None]


async def interpret(
    fragments: AsyncIterable[Fragment],
    token: CancellationToken,
    prior_text: str = "",
    *,
    plan_gate: PlanGate | None = None,
    on_text: TextCallback | None = None,
) -> TurnOutcome:
    """Reduce a fragment stream to a turn outcome.

    Args:
        fragments: The turn's lazy, finite fragment stream. Consumed once.
        token: Run cancellation token.
        prior_text: Text carried over from earlier truncated turns.
        plan_gate: Plan gate for runs that require approval, else None.
        on_text: Receives the accumulated text after every non-empty delta.

    Returns:
        The outcome for this turn. Exceptions raised by the stream are
        returned as :class:`Failed`, or :class:`Aborted` when the token was
        already set.
    """
    turn_text = ""
    calls: list[FunctionCall] = []
    finish_reason: FinishReason | None = None
    grounding: GroundingMetadata | None = None

    try:
        async for fragment in fragments:
            if token.cancelled:
                LOGGER.debug("Cancellation observed mid-stream after %d chars", len(turn_text))
                return Aborted()

            if fragment.text:
                turn_text += fragment.text
                if on_text is not None:
                    on_text(strip_sentinel(prior_text + turn_text))
            if fragment.function_calls:
                calls.extend(fragment.function_calls)
            if fragment.grounding is not None:
                grounding = fragment.grounding
            if fragment.finish_reason is not None:
                finish_reason = fragment.finish_reason
                if finish_reason is FinishReason.SAFETY:
                    raise ContentBlockedError()
    except Exception as exc:
        if token.cancelled:
            LOGGER.debug("Stream error after cancellation suppressed: %s", exc)
            return Aborted()
        LOGGER.warning("Fragment stream failed: %s", exc, exc_info=True)
        return Failed(classify_error(exc, ErrorKind.STREAM))
    finally:
        await close_stream(fragments)

    if token.cancelled:
        return Aborted()

    summary = TurnSummary(
        text=turn_text,
        calls=tuple(calls),
        finish_reason=finish_reason,
        plan_gate_open=plan_gate is not None and not plan_gate.approved,
    )
    action = decide(summary)
    LOGGER.debug(
        "Turn interpreted: action=%s chars=%d calls=%d finish=%s",
        action.value,
        len(turn_text),
        len(calls),
        finish_reason.value if finish_reason else None,
    )

    if action is NextAction.APPEND_TOOL_RESULTS:
        return AppendToolResults(text=strip_sentinel(turn_text).strip(), calls=summary.calls)

    if action is NextAction.CONTINUE_TRUNCATED:
        cleaned = strip_sentinel(turn_text)
        return ContinueTruncated(turn_text=cleaned, accumulated_text=prior_text + cleaned)

    if action is NextAction.AWAIT_PLAN_APPROVAL:
        assert plan_gate is not None
        return await _await_plan(plan_gate, turn_text, token)

    return Complete(text=prior_text + turn_text, grounding=grounding)


async def _await_plan(gate: PlanGate, turn_text: str, token: CancellationToken) -> TurnOutcome:
    try:
        decision, text = await gate.review(turn_text)
    except Exception:
        LOGGER.warning("Plan approver failed; treating the plan as rejected", exc_info=True)
        return Aborted(reason="plan review failed")
    if token.cancelled:
        LOGGER.debug("Cancellation observed while awaiting plan approval")
        return Aborted()
    if not decision.approved:
        return Aborted(reason=decision.reason or "plan rejected")
    return ContinueEditedPlan(text=text)


async def close_stream(fragments: AsyncIterable[Fragment]) -> None:
    close = getattr(fragments, "aclose", None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except Exception:
        LOGGER.debug("Closing fragment stream failed", exc_info=True)
