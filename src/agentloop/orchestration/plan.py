"""Plan-approval gate.

When a run requires plan approval, a model turn containing the approval
marker pauses the run until a :class:`PlanApprover` accepts (optionally
editing) or rejects the proposed plan. A plan is gated at most once per run.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

__all__ = [
    "PLAN_MARKER",
    "PLAN_HEADER",
    "STEP_MARKER",
    "PlanDecision",
    "PlanApprover",
    "AutoApprover",
    "PlanGate",
    "has_plan_marker",
    "extract_plan",
    "strip_plan_marker",
]

LOGGER = logging.getLogger(__name__)

PLAN_MARKER = "[USER_APPROVAL_REQUIRED]"
PLAN_HEADER = "[STEP] Strategic Plan:"
STEP_MARKER = "[STEP]"

_AGENT_TAG = re.compile(r"\[AGENT:.*?\]\s*")


# -----------------------------------------------------------------------------
# Plan Text Helpers
# -----------------------------------------------------------------------------


def has_plan_marker(text: str) -> bool:
    """Return True when ``text`` asks for plan approval."""
    return PLAN_MARKER in text


def strip_plan_marker(text: str) -> str:
    """Remove every approval marker and surrounding whitespace."""
    return text.replace(PLAN_MARKER, "").strip()


def extract_plan(text: str) -> str:
    """Pull the plan body out of a model turn.

    Takes the text after ``[STEP] Strategic Plan:`` up to the next ``[STEP]``.
    Without that header, takes the text before the first ``[STEP]``, or the
    whole text when there are no steps. Agent tags and the approval marker are
    dropped.

    Args:
        text: Full text of the model turn.

    Returns:
        The trimmed plan body.
    """
    header_index = text.find(PLAN_HEADER)
    if header_index != -1:
        start = header_index + len(PLAN_HEADER)
        end = text.find(STEP_MARKER, start)
        plan = text[start:end] if end != -1 else text[start:]
    else:
        first_step = text.find(STEP_MARKER)
        plan = text[:first_step] if first_step != -1 else text
    plan = _AGENT_TAG.sub("", plan)
    return strip_plan_marker(plan)


# -----------------------------------------------------------------------------
# Decisions and Approvers
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PlanDecision:
    """Result of reviewing a plan.

    Attributes:
        approved: Whether execution may proceed.
        edited_text: Replacement plan text, None to keep the model's plan.
        reason: Optional explanation, mostly useful for rejections.
    """

    approved: bool
    edited_text: str | None = None
    reason: str = ""

    @classmethod
    def approve(cls, edited_text: str | None = None) -> PlanDecision:
        """Approve the plan, optionally replacing its text."""
        return cls(approved=True, edited_text=edited_text)

    @classmethod
    def reject(cls, reason: str = "plan rejected") -> PlanDecision:
        """Reject the plan; the run ends as cancelled."""
        return cls(approved=False, reason=reason)


@runtime_checkable
class PlanApprover(Protocol):
    """External decision maker for the plan gate."""

    async def review(self, plan_text: str) -> PlanDecision:
        """Return a decision for the extracted plan text."""
        ...


class AutoApprover:
    """Approves every plan unchanged. For headless runs."""

    async def review(self, plan_text: str) -> PlanDecision:
        LOGGER.debug("Auto-approving plan (%d chars)", len(plan_text))
        return PlanDecision.approve()


# -----------------------------------------------------------------------------
# Gate
# -----------------------------------------------------------------------------


class PlanGate:
    """Per-run plan gate state.

    Args:
        approver: Who decides on proposed plans.
        approved: Initial approval state; True disables the gate.
    """

    def __init__(self, approver: PlanApprover, *, approved: bool = False) -> None:
        self._approver = approver
        self._approved = approved

    @property
    def approved(self) -> bool:
        return self._approved

    def mark_approved(self) -> None:
        self._approved = True

    async def review(self, turn_text: str) -> tuple[PlanDecision, str]:
        """Ask the approver about the plan in ``turn_text``.

        Returns:
            The decision and the text to carry forward: the edited plan when the
            approver supplied one, otherwise the turn text without the marker.
        """
        plan = extract_plan(turn_text)
        LOGGER.info("Plan awaiting approval (%d chars)", len(plan))
        decision = await self._approver.review(plan)
        if not decision.approved:
            LOGGER.info("Plan rejected: %s", decision.reason or "no reason given")
            return decision, ""
        text = decision.edited_text if decision.edited_text is not None else strip_plan_marker(turn_text)
        LOGGER.info("Plan approved%s", " with edits" if decision.edited_text is not None else "")
        return decision, text
