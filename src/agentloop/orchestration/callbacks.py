"""Callback sink interface and helpers.

A sink receives every observable event of a run: streaming text, new tool
calls, individual tool results, and exactly one terminal event
(``on_complete``, ``on_error`` or ``on_cancel``) which always fires last.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, Sequence, runtime_checkable

from .errors import ClassifiedError
from .types import GroundingMetadata, ToolCallEvent

__all__ = [
    "CallbackSink",
    "NullCallbackSink",
    "LoggingCallbackSink",
    "CallbackGuard",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class CallbackSink(Protocol):
    """Receiver for run events.

    Calls are fire-and-forget from the driver's perspective. ``on_tool_result``
    may be invoked from concurrently settling tool coroutines; every other
    method is called sequentially by the driver.
    """

    def on_text_chunk(self, accumulated_text: str) -> None:
        """Called with the full text accumulated so far (not the delta)."""
        ...

    def on_new_tool_calls(self, events: Sequence[ToolCallEvent]) -> None:
        """Called once per model turn that requested tools."""
        ...

    def on_tool_result(self, event_id: str, result: str) -> None:
        """Called as soon as an individual tool invocation settles."""
        ...

    def on_complete(self, final_text: str, grounding: GroundingMetadata | None) -> None:
        """Terminal: the run finished normally."""
        ...

    def on_error(self, error: ClassifiedError) -> None:
        """Terminal: the run failed."""
        ...

    def on_cancel(self) -> None:
        """Terminal: the run was cancelled."""
        ...


class NullCallbackSink:
    """Sink that ignores every event. Subclass and override what you need."""

    def on_text_chunk(self, accumulated_text: str) -> None:
        pass

    def on_new_tool_calls(self, events: Sequence[ToolCallEvent]) -> None:
        pass

    def on_tool_result(self, event_id: str, result: str) -> None:
        pass

    def on_complete(self, final_text: str, grounding: GroundingMetadata | None) -> None:
        pass

    def on_error(self, error: ClassifiedError) -> None:
        pass

    def on_cancel(self) -> None:
        pass


class LoggingCallbackSink(NullCallbackSink):
    """Sink that mirrors run events to a logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def on_new_tool_calls(self, events: Sequence[ToolCallEvent]) -> None:
        for event in events:
            self._logger.info("Tool call %s: %s(%s)", event.id, event.call.name, dict(event.call.args))

    def on_tool_result(self, event_id: str, result: str) -> None:
        self._logger.info("Tool result %s: %d chars", event_id, len(result))

    def on_complete(self, final_text: str, grounding: GroundingMetadata | None) -> None:
        self._logger.info("Run complete: %d chars", len(final_text))

    def on_error(self, error: ClassifiedError) -> None:
        self._logger.error("Run failed: %s", error)

    def on_cancel(self) -> None:
        self._logger.info("Run cancelled")


# -----------------------------------------------------------------------------
# Guard
# -----------------------------------------------------------------------------


class CallbackGuard:
    """Wraps a sink for one run.

    Exceptions raised by the sink are logged and never break the loop. The
    guard also tracks whether a terminal event has fired, so the driver emits
    exactly one of ``on_complete``, ``on_error`` and ``on_cancel``.
    """

    def __init__(self, sink: CallbackSink | None, *, run_id: str = "") -> None:
        self._sink = sink or NullCallbackSink()
        self._run_id = run_id
        self._terminal: str | None = None
        self._lock = threading.Lock()

    @property
    def sink(self) -> CallbackSink:
        return self._sink

    @property
    def terminal(self) -> str | None:
        """Name of the terminal event that fired, if any."""
        return self._terminal

    def text_chunk(self, accumulated_text: str) -> None:
        if self._terminal is None:
            self._call("on_text_chunk", accumulated_text)

    def new_tool_calls(self, events: Sequence[ToolCallEvent]) -> None:
        if self._terminal is None:
            self._call("on_new_tool_calls", list(events))

    def tool_result(self, event_id: str, result: str) -> None:
        self._call("on_tool_result", event_id, result)

    def complete(self, final_text: str, grounding: GroundingMetadata | None) -> bool:
        return self._finish("on_complete", final_text, grounding)

    def error(self, error: ClassifiedError) -> bool:
        return self._finish("on_error", error)

    def cancel(self) -> bool:
        return self._finish("on_cancel")

    def _finish(self, method: str, *args: object) -> bool:
        with self._lock:
            if self._terminal is not None:
                LOGGER.debug(
                    "Run %s: suppressing %s, %s already fired", self._run_id, method, self._terminal
                )
                return False
            self._terminal = method
        self._call(method, *args)
        return True

    def _call(self, method: str, *args: object) -> None:
        handler = getattr(self._sink, method, None)
        if handler is None:
            return
        try:
            handler(*args)
        except Exception:
            LOGGER.warning("Run %s: callback %s raised", self._run_id, method, exc_info=True)
