"""Tool declarations and implementations.

A :class:`ToolSpec` is what the model sees; a :class:`Tool` is what runs.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

__all__ = [
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "Tool",
    "SimpleTool",
]


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Declaration of a tool offered to the model.

    Attributes:
        name: Unique identifier for the tool.
        description: What the tool does, written for the model.
        parameters: JSON Schema for the tool's arguments.
    """

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Tool name must be a non-empty string")

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to the chat-completions tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.parameters) if self.parameters else {
                    "type": "object",
                    "properties": {},
                },
            },
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters) if self.parameters else {},
        }


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

# Synchronous tool handler
ToolHandler = Callable[[Mapping[str, Any]], Any]

# Asynchronous tool handler
AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


# -----------------------------------------------------------------------------
# Tool Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations."""

    @property
    def name(self) -> str:
        """Get the tool's unique name."""
        ...

    @property
    def spec(self) -> ToolSpec:
        """Get the tool's declaration."""
        ...

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        """Run the tool.

        Raises:
            Exception: If the tool fails.
        """
        ...


@dataclass
class SimpleTool:
    """Tool backed by a plain function (sync or async).

    Example:
        tool = SimpleTool(
            spec=ToolSpec(name="calculator", description="Evaluate arithmetic"),
            handler=lambda args: str(eval_expression(args["expression"])),
        )
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler
    _is_async: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._is_async = inspect.iscoroutinefunction(self.handler)

    @property
    def name(self) -> str:
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        if self._is_async:
            return await self.handler(arguments)  # type: ignore[misc]
        return self.handler(arguments)
