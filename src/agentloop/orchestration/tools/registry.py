"""Tool registry.

Holds the tools available to a run and produces the declarations handed to
the model through :class:`~agentloop.orchestration.types.GenerationSettings`.
"""

from __future__ import annotations

import importlib
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Sequence

from .types import AsyncToolHandler, SimpleTool, Tool, ToolHandler, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
    "ToolImportError",
    "load_tool",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not registered or is disabled."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


class ToolImportError(Exception):
    """Raised when a ``module:attribute`` tool reference cannot be loaded."""

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        super().__init__(f"Cannot load tool '{reference}': {reason}")


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool."""

    name: str
    tool: Tool
    enabled: bool = True

    @property
    def spec(self) -> ToolSpec:
        return self.tool.spec


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Registry of named tools.

    Example:
        registry = ToolRegistry()
        registry.register_function(
            ToolSpec(name="calculator", description="Evaluate arithmetic"),
            lambda args: evaluate(args["expression"]),
        )
        settings = GenerationSettings(tools=registry.declarations())
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}

    def register(self, tool: Tool, *, enabled: bool = True, allow_override: bool = False) -> ToolRegistration:
        """Register a tool implementation.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        name = tool.name
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name)
        registration = ToolRegistration(name=name, tool=tool, enabled=enabled)
        self._tools[name] = registration
        LOGGER.debug("Registered tool: %s", name)
        return registration

    def register_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        enabled: bool = True,
        allow_override: bool = False,
    ) -> ToolRegistration:
        """Register a sync or async function as a tool."""
        return self.register(
            SimpleTool(spec=spec, handler=handler),
            enabled=enabled,
            allow_override=allow_override,
        )

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool: %s", name)
            return True
        return False

    def get(self, name: str) -> Tool | None:
        """Return the tool if registered and enabled, else None."""
        registration = self._tools.get(name)
        if registration is None or not registration.enabled:
            return None
        return registration.tool

    def get_required(self, name: str) -> Tool:
        """Return the tool, raising :class:`ToolNotFoundError` if unavailable."""
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def has(self, name: str) -> bool:
        registration = self._tools.get(name)
        return registration is not None and registration.enabled

    def list_names(self, *, include_disabled: bool = False) -> list[str]:
        return [r.name for r in self._tools.values() if r.enabled or include_disabled]

    def declarations(self, *, filter_names: Sequence[str] | None = None) -> tuple[ToolSpec, ...]:
        """Declarations of enabled tools, in registration order.

        Args:
            filter_names: If provided, only include these tools.
        """
        return tuple(
            r.spec
            for r in self._tools.values()
            if r.enabled and (filter_names is None or r.name in filter_names)
        )

    def get_openai_tools(self) -> list[dict[str, Any]]:
        """Enabled tool definitions in chat-completions format."""
        return [spec.to_openai_tool() for spec in self.declarations()]

    def enable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = True
        return True

    def disable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = False
        return True

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


# -----------------------------------------------------------------------------
# Loading Tools by Reference
# -----------------------------------------------------------------------------


def load_tool(reference: str) -> Tool:
    """Import a tool from a ``package.module:attribute`` reference.

    The attribute may be a :class:`Tool` instance, used as is, or a plain
    function taking the argument mapping. A function is declared under its
    ``__name__`` with the first paragraph of its docstring as description and
    its ``parameters`` attribute (a JSON Schema) when present.

    Raises:
        ToolImportError: If the reference is malformed or does not resolve to a tool.
    """
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ToolImportError(reference, "expected 'module:attribute'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ToolImportError(reference, str(exc)) from exc

    target: Any = module
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ToolImportError(reference, f"no attribute '{part}'") from exc

    if isinstance(target, Tool) and isinstance(getattr(target, "spec", None), ToolSpec):
        return target
    if not callable(target):
        raise ToolImportError(reference, f"{type(target).__name__} is neither a tool nor a function")

    doc = inspect.getdoc(target) or ""
    spec = ToolSpec(
        name=getattr(target, "__name__", attribute.rpartition(".")[2]),
        description=doc.split("\n\n", 1)[0].strip(),
        parameters=getattr(target, "parameters", None) or {},
    )
    LOGGER.debug("Loaded tool %s from %s", spec.name, reference)
    return SimpleTool(spec=spec, handler=target)
