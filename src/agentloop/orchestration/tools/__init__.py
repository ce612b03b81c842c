"""Tool system for the turn driver.

This package provides the tool registry, a registry-backed executor, and the
declaration types handed to the model.

Example:
    from agentloop.orchestration.tools import (
        RegistryToolExecutor,
        ToolRegistry,
        ToolSpec,
    )

    registry = ToolRegistry()
    registry.register_function(
        spec=ToolSpec(name="greet", description="Greet someone"),
        handler=lambda args: f"Hello, {args.get('name', 'World')}!",
    )

    executor = RegistryToolExecutor(registry)
    result = await executor.execute("greet", {"name": "Alice"})
"""

from .types import (
    Tool,
    ToolSpec,
    ToolHandler,
    AsyncToolHandler,
    SimpleTool,
)

from .registry import (
    ToolRegistry,
    ToolRegistration,
    DuplicateToolError,
    ToolNotFoundError,
    ToolImportError,
    load_tool,
)

from .executor import (
    RegistryToolExecutor,
    ExecutorConfig,
    ToolExecutionError,
    format_tool_result_content,
)

__all__ = [
    # types.py
    "Tool",
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "SimpleTool",
    # registry.py
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
    "ToolImportError",
    "load_tool",
    # executor.py
    "RegistryToolExecutor",
    "ExecutorConfig",
    "ToolExecutionError",
    "format_tool_result_content",
]
