"""agentloop: async turn driver for tool-using, plan-gated model conversations."""

from .orchestration import (
    AutoApprover,
    CallbackSink,
    CancellationToken,
    ClassifiedError,
    ConversationHistory,
    FinishReason,
    Fragment,
    FunctionCall,
    GenerationSettings,
    ModelProvider,
    NullCallbackSink,
    PlanApprover,
    PlanDecision,
    RegistryToolExecutor,
    RunHandle,
    RunResult,
    RunState,
    ToolCallEvent,
    ToolExecutor,
    ToolRegistry,
    ToolSpec,
    Turn,
    TurnDriver,
    run_conversation,
)

__all__ = [
    "AutoApprover",
    "CallbackSink",
    "CancellationToken",
    "ClassifiedError",
    "ConversationHistory",
    "FinishReason",
    "Fragment",
    "FunctionCall",
    "GenerationSettings",
    "ModelProvider",
    "NullCallbackSink",
    "PlanApprover",
    "PlanDecision",
    "RegistryToolExecutor",
    "RunHandle",
    "RunResult",
    "RunState",
    "ToolCallEvent",
    "ToolExecutor",
    "ToolRegistry",
    "ToolSpec",
    "Turn",
    "TurnDriver",
    "run_conversation",
]

__version__ = "0.1.0"
