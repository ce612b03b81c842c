"""Pipeline stage: Dispatch.

Runs every tool call requested by one model turn concurrently, isolates
per-call failures, and returns one result per call in request order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol, Sequence, runtime_checkable

from ..cancellation import CancellationToken
from ..errors import DispatchCancelled
from ..tools.executor import format_tool_result_content
from ..types import FunctionCall, FunctionResultPart, IdGenerator, ToolCallEvent, uuid_ids

__all__ = [
    "ToolExecutor",
    "FunctionResult",
    "ResultCallback",
    "TOOL_FAILURE_PREFIX",
    "create_tool_call_events",
    "dispatch",
    "format_tool_failure",
]

LOGGER = logging.getLogger(__name__)

TOOL_FAILURE_PREFIX = "Tool execution failed. Reason: "

# Called with (event_id, result) as each invocation settles
ResultCallback = Callable[[str, str], None]


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ToolExecutor(Protocol):
    """Runs a tool by name. Failures are signalled by raising."""

    async def execute(self, name: str, args: Mapping[str, Any]) -> Any:
        """Execute a tool by name with arguments.

        Args:
            name: Name of the tool to execute.
            args: Structured arguments.

        Returns:
            The tool result; non-string results are formatted for the model.

        Raises:
            Exception: If tool execution fails.
        """
        ...


# -----------------------------------------------------------------------------
# Result Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class FunctionResult:
    """Outcome of one tool invocation.

    Attributes:
        call_id: Identifier of the ToolCallEvent.
        name: Tool name.
        result: Text fed back to the model (a failure message on error).
        success: Whether the tool returned normally.
        duration_ms: Wall time of the invocation.
    """

    call_id: str
    name: str
    result: str
    success: bool = True
    duration_ms: float = 0.0

    def to_part(self) -> FunctionResultPart:
        """Convert to a history part answering the matching call."""
        return FunctionResultPart(name=self.name, result=self.result, call_id=self.call_id)


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def format_tool_failure(error: BaseException) -> str:
    """Render a tool exception as the text the model will see."""
    message = str(error) or type(error).__name__
    return f"{TOOL_FAILURE_PREFIX}{message}"


def create_tool_call_events(
    calls: Sequence[FunctionCall],
    id_factory: IdGenerator = uuid_ids,
) -> list[ToolCallEvent]:
    """Wrap calls into events, one fresh identifier each, preserving order."""
    events: list[ToolCallEvent] = []
    seen: set[str] = set()
    for call in calls:
        event_id = id_factory(call)
        if event_id in seen:
            raise ValueError(f"Identifier generator produced a duplicate id: {event_id}")
        seen.add(event_id)
        events.append(ToolCallEvent(id=event_id, call=call))
    return events


# -----------------------------------------------------------------------------
# Dispatch
# -----------------------------------------------------------------------------


async def _invoke(
    event: ToolCallEvent,
    executor: ToolExecutor,
    on_result: ResultCallback | None,
) -> FunctionResult:
    start_time = time.perf_counter()
    name = event.call.name
    try:
        raw_result = await executor.execute(name, event.call.args)
        text = format_tool_result_content(raw_result)
        success = True
    except asyncio.CancelledError as exc:
        # Only a cancellation aimed at this task is propagated; one raised by the tool is its failure
        task = asyncio.current_task()
        if task is not None and task.cancelling():
            raise
        text = format_tool_failure(exc)
        success = False
        LOGGER.warning("Tool %s (%s) raised CancelledError", name, event.id)
    except Exception as exc:
        text = format_tool_failure(exc)
        success = False
        LOGGER.warning("Tool %s (%s) failed: %s", name, event.id, exc)
    duration_ms = (time.perf_counter() - start_time) * 1000

    event.complete(text)
    LOGGER.debug("Tool %s (%s) settled in %.1fms success=%s", name, event.id, duration_ms, success)
    if on_result is not None:
        try:
            on_result(event.id, text)
        except Exception:
            LOGGER.warning("Tool result callback failed for %s", event.id, exc_info=True)
    return FunctionResult(
        call_id=event.id,
        name=name,
        result=text,
        success=success,
        duration_ms=duration_ms,
    )


async def dispatch(
    events: Sequence[ToolCallEvent],
    executor: ToolExecutor,
    token: CancellationToken,
    *,
    on_result: ResultCallback | None = None,
) -> list[FunctionResult]:
    """Execute all events concurrently and join.

    Args:
        events: Tool call events of one model turn, in request order.
        executor: Tool executor to run them against.
        token: Run cancellation token, checked once before submission.
        on_result: Receives each result as soon as its invocation settles.

    Returns:
        One result per event, in the order of ``events``.

    Raises:
        DispatchCancelled: If the token is set before any tool is submitted.
    """
    if token.cancelled:
        raise DispatchCancelled()
    if not events:
        return []

    LOGGER.debug("Dispatching %d tool call(s): %s", len(events), [e.call.name for e in events])
    start_time = time.perf_counter()
    results = await asyncio.gather(*(_invoke(event, executor, on_result) for event in events))
    LOGGER.debug(
        "Dispatch settled in %.1fms (%d failed)",
        (time.perf_counter() - start_time) * 1000,
        sum(1 for r in results if not r.success),
    )
    return list(results)
