"""Pipeline stages of one model turn.

This package contains the individual stages the turn driver sequences:
- request: Ask the model provider for a fragment stream
- interpret: Reduce the fragment stream to a turn outcome
- dispatch: Run requested tools concurrently and join their results
"""

from .request import (
    ModelProvider,
    FragmentStream,
    open_stream,
)

from .interpret import (
    interpret,
    close_stream,
    TextCallback,
)

from .dispatch import (
    ToolExecutor,
    FunctionResult,
    ResultCallback,
    TOOL_FAILURE_PREFIX,
    create_tool_call_events,
    dispatch,
    format_tool_failure,
)

__all__ = [
    # request.py exports
    "ModelProvider",
    "FragmentStream",
    "open_stream",
    # interpret.py exports
    "interpret",
    "close_stream",
    "TextCallback",
    # dispatch.py exports
    "ToolExecutor",
    "FunctionResult",
    "ResultCallback",
    "TOOL_FAILURE_PREFIX",
    "create_tool_call_events",
    "dispatch",
    "format_tool_failure",
]
