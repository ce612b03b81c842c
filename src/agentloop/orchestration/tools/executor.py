"""Registry-backed tool executor.

:class:`RegistryToolExecutor` satisfies the dispatcher's ``ToolExecutor``
protocol: it looks tools up by name, runs them with an optional timeout, and
returns their result as text. Every failure is raised; the dispatcher turns it
into a message for the model.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

from .registry import ToolNotFoundError, ToolRegistry

__all__ = [
    "RegistryToolExecutor",
    "ExecutorConfig",
    "ToolExecutionError",
    "format_tool_result_content",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class ToolExecutionError(Exception):
    """Raised when a registered tool fails or times out."""

    def __init__(
        self,
        message: str,
        tool_name: str = "",
        cause: Exception | None = None,
    ) -> None:
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(message)


# -----------------------------------------------------------------------------
# Executor Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Configuration for the tool executor.

    Attributes:
        default_timeout: Per-call timeout in seconds; None or 0 disables it.
        log_arguments: Whether to log tool arguments (may contain sensitive data).
        log_results: Whether to log tool results.
    """

    default_timeout: float | None = 30.0
    log_arguments: bool = False
    log_results: bool = False


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def format_tool_result_content(result: Any) -> str:
    """Format a tool result for inclusion in a function-result part.

    Args:
        result: The raw tool result.

    Returns:
        String representation of the result.
    """
    if result is None:
        return "null"

    if isinstance(result, str):
        return result

    if isinstance(result, bool):
        return "true" if result else "false"

    if isinstance(result, (int, float)):
        return str(result)

    if isinstance(result, (dict, list, tuple)):
        try:
            return json.dumps(result, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            return str(result)

    if hasattr(result, "to_dict") and callable(result.to_dict):
        try:
            return json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            pass

    return str(result)


# -----------------------------------------------------------------------------
# Tool Executor
# -----------------------------------------------------------------------------


class RegistryToolExecutor:
    """Runs tools from a :class:`ToolRegistry`.

    Example:
        executor = RegistryToolExecutor(registry, ExecutorConfig(default_timeout=10))
        text = await executor.execute("calculator", {"expression": "2+2"})
    """

    def __init__(
        self,
        registry: ToolRegistry,
        config: ExecutorConfig | None = None,
    ) -> None:
        self._registry = registry
        self._config = config or ExecutorConfig()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    async def execute(self, name: str, args: Mapping[str, Any]) -> str:
        """Execute a tool by name.

        Args:
            name: Name of the tool to execute.
            args: Arguments to pass to the tool.

        Returns:
            The tool's result as text.

        Raises:
            ToolNotFoundError: If the tool is unknown or disabled.
            ToolExecutionError: If the tool raises or times out.
        """
        if self._config.log_arguments:
            LOGGER.debug("Executing tool %s with arguments: %s", name, dict(args))
        else:
            LOGGER.debug("Executing tool %s", name)

        tool = self._registry.get(name)
        if tool is None:
            LOGGER.warning("Tool '%s' not found or disabled", name)
            raise ToolNotFoundError(name)

        timeout = self._config.default_timeout
        start_time = time.perf_counter()
        try:
            if timeout is not None and timeout > 0:
                result = await asyncio.wait_for(tool.execute(args), timeout=timeout)
            else:
                result = await tool.execute(args)
        except asyncio.TimeoutError as exc:
            LOGGER.warning("Tool %s timed out after %.1fs", name, timeout)
            raise ToolExecutionError(
                f"Tool '{name}' timed out after {timeout}s",
                tool_name=name,
                cause=exc,
            ) from exc
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s failed after %.1fms: %s", name, duration_ms, exc)
            raise ToolExecutionError(
                str(exc) or type(exc).__name__,
                tool_name=name,
                cause=exc,
            ) from exc

        duration_ms = (time.perf_counter() - start_time) * 1000
        text = format_tool_result_content(result)
        if self._config.log_results:
            LOGGER.debug("Tool %s completed in %.1fms with result: %s", name, duration_ms, text)
        else:
            LOGGER.debug("Tool %s completed in %.1fms", name, duration_ms)
        return text

    def has_tool(self, name: str) -> bool:
        return self._registry.has(name)
