"""Turn driver core: conversation types, pipeline stages, and the run loop."""

# Core types
from .types import (
    CONTINUE_PROMPT,
    PLAN_APPROVED_PROMPT,
    ConversationHistory,
    FinishReason,
    Fragment,
    FunctionCall,
    FunctionCallPart,
    FunctionResultPart,
    GenerationSettings,
    GroundingMetadata,
    IdGenerator,
    Part,
    SequentialIds,
    SourceReference,
    TextPart,
    ToolCallEvent,
    Turn,
    uuid_ids,
)

# Errors
from .errors import (
    AgentLoopError,
    ClassifiedError,
    ContentBlockedError,
    DispatchCancelled,
    ErrorCode,
    ErrorKind,
    ProviderError,
    SettingsError,
    StreamError,
    classify_error,
)

# Outcomes and policy
from .outcomes import (
    Aborted,
    AppendToolResults,
    Complete,
    ContinueEditedPlan,
    ContinueTruncated,
    Failed,
    TurnOutcome,
)
from .policy import CONTINUATION_SENTINEL, NextAction, TurnSummary, decide

# Collaborators
from .cancellation import CancellationToken
from .callbacks import CallbackGuard, CallbackSink, LoggingCallbackSink, NullCallbackSink
from .plan import PLAN_MARKER, AutoApprover, PlanApprover, PlanDecision, PlanGate, extract_plan

# Pipeline stages
from .pipeline import (
    FunctionResult,
    ModelProvider,
    ToolExecutor,
    create_tool_call_events,
    dispatch,
    interpret,
)

# Turn driver
from .runner import RunHandle, RunResult, RunState, TurnDriver, run_conversation

# Tool system
from .tools import (
    DuplicateToolError,
    ExecutorConfig,
    RegistryToolExecutor,
    SimpleTool,
    Tool,
    ToolExecutionError,
    ToolNotFoundError,
    ToolRegistry,
    ToolSpec,
)

__all__ = [
    # types
    "CONTINUE_PROMPT",
    "PLAN_APPROVED_PROMPT",
    "ConversationHistory",
    "FinishReason",
    "Fragment",
    "FunctionCall",
    "FunctionCallPart",
    "FunctionResultPart",
    "GenerationSettings",
    "GroundingMetadata",
    "IdGenerator",
    "Part",
    "SequentialIds",
    "SourceReference",
    "TextPart",
    "ToolCallEvent",
    "Turn",
    "uuid_ids",
    # errors
    "AgentLoopError",
    "ClassifiedError",
    "ContentBlockedError",
    "DispatchCancelled",
    "ErrorCode",
    "ErrorKind",
    "ProviderError",
    "SettingsError",
    "StreamError",
    "classify_error",
    # outcomes and policy
    "Aborted",
    "AppendToolResults",
    "Complete",
    "ContinueEditedPlan",
    "ContinueTruncated",
    "Failed",
    "TurnOutcome",
    "CONTINUATION_SENTINEL",
    "NextAction",
    "TurnSummary",
    "decide",
    # collaborators
    "CancellationToken",
    "CallbackGuard",
    "CallbackSink",
    "LoggingCallbackSink",
    "NullCallbackSink",
    "PLAN_MARKER",
    "AutoApprover",
    "PlanApprover",
    "PlanDecision",
    "PlanGate",
    "extract_plan",
    # pipeline
    "FunctionResult",
    "ModelProvider",
    "ToolExecutor",
    "create_tool_call_events",
    "dispatch",
    "interpret",
    # runner
    "RunHandle",
    "RunResult",
    "RunState",
    "TurnDriver",
    "run_conversation",
    # tools
    "DuplicateToolError",
    "ExecutorConfig",
    "RegistryToolExecutor",
    "SimpleTool",
    "Tool",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolSpec",
]
