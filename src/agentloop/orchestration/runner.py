"""Turn Driver: runs a conversation until it completes, fails or is cancelled.

Each iteration requests one model turn, interprets its fragment stream, and
then either dispatches tools, resumes after an approved plan, continues a
truncated answer, or terminates. Exactly one terminal callback fires per run.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from .callbacks import CallbackGuard, CallbackSink
from .cancellation import CancellationToken
from .errors import (
    ClassifiedError,
    DispatchCancelled,
    ErrorCode,
    ErrorKind,
    SettingsError,
    classify_error,
)
from .outcomes import (
    Aborted,
    AppendToolResults,
    Complete,
    ContinueEditedPlan,
    ContinueTruncated,
    Failed,
    TurnOutcome,
)
from .pipeline.dispatch import ToolExecutor, create_tool_call_events, dispatch
from .pipeline.interpret import close_stream, interpret
from .pipeline.request import ModelProvider, open_stream
from .plan import PlanApprover, PlanGate
from .policy import strip_sentinel
from .types import (
    CONTINUE_PROMPT,
    PLAN_APPROVED_PROMPT,
    ConversationHistory,
    FunctionCallPart,
    GenerationSettings,
    GroundingMetadata,
    IdGenerator,
    Part,
    TextPart,
    Turn,
    uuid_ids,
)

__all__ = [
    "RunState",
    "RunResult",
    "RunHandle",
    "TurnDriver",
    "run_conversation",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Run State and Result
# -----------------------------------------------------------------------------


class RunState(str, Enum):
    IDLE = "idle"
    REQUESTING_MODEL = "requesting_model"
    INTERPRETING_STREAM = "interpreting_stream"
    DISPATCHING_TOOLS = "dispatching_tools"
    AWAITING_PLAN_EDIT = "awaiting_plan_edit"
    CONTINUING_TRUNCATED = "continuing_truncated"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED, RunState.ABORTED)


@dataclass(slots=True, frozen=True)
class RunResult:
    """Summary of a finished run.

    Attributes:
        run_id: Identifier used in log lines for this run.
        state: Terminal state.
        text: Final text when the run completed.
        grounding: Grounding metadata when the run completed.
        error: Classified error when the run failed.
        requests: Number of model requests issued.
        history: Conversation history at termination.
        duration_ms: Wall time of the run.
    """

    run_id: str
    state: RunState
    text: str | None = None
    grounding: GroundingMetadata | None = None
    error: ClassifiedError | None = None
    requests: int = 0
    history: tuple[Turn, ...] = ()
    duration_ms: float = 0.0

    @property
    def completed(self) -> bool:
        return self.state is RunState.COMPLETED

    @property
    def failed(self) -> bool:
        return self.state is RunState.FAILED

    @property
    def aborted(self) -> bool:
        return self.state is RunState.ABORTED


@dataclass(slots=True)
class _RunContext:
    """Mutable per-run state, owned by one driver task."""

    run_id: str
    history: ConversationHistory
    settings: GenerationSettings
    token: CancellationToken
    sink: CallbackGuard
    plan_gate: PlanGate | None
    state: RunState = RunState.IDLE
    carried_text: str = ""
    requests: int = 0
    started_at: float = field(default_factory=time.perf_counter)

    def transition(self, state: RunState) -> None:
        LOGGER.debug("Run %s: %s -> %s", self.run_id, self.state.value, state.value)
        self.state = state


# -----------------------------------------------------------------------------
# Run Handle
# -----------------------------------------------------------------------------


class RunHandle:
    """Handle to a run started with :meth:`TurnDriver.start`.

    Holds the run's cancellation token; awaiting the handle (or
    :meth:`wait`) returns the :class:`RunResult`.
    """

    def __init__(self, task: asyncio.Task[RunResult], token: CancellationToken, run_id: str) -> None:
        self._task = task
        self._token = token
        self._run_id = run_id
        self._timer: asyncio.TimerHandle | None = None
        task.add_done_callback(self._on_done)

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def token(self) -> CancellationToken:
        return self._token

    def cancel(self) -> None:
        """Request cooperative cancellation of the run."""
        self._token.cancel()

    def cancel_after(self, seconds: float) -> None:
        """Cancel the run if it is still going after ``seconds``."""
        if seconds <= 0:
            raise ValueError("seconds must be positive")
        if self._timer is not None:
            self._timer.cancel()
        loop = self._task.get_loop()
        self._timer = loop.call_later(seconds, self._on_timeout, seconds)

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> RunResult:
        """Wait for the run to reach a terminal state."""
        return await asyncio.shield(self._task)

    def __await__(self):
        return self.wait().__await__()

    def _on_timeout(self, seconds: float) -> None:
        if not self._task.done():
            LOGGER.info("Run %s timed out after %.1fs; cancelling", self._run_id, seconds)
            self._token.cancel()

    def _on_done(self, _task: asyncio.Task[RunResult]) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def __repr__(self) -> str:
        return f"RunHandle(run_id={self._run_id!r}, done={self.done()})"


# -----------------------------------------------------------------------------
# Turn Driver
# -----------------------------------------------------------------------------


class TurnDriver:
    """Drives one conversation run at a time per call.

    The driver itself is stateless between runs; all per-run state lives in a
    private context, so one driver may serve concurrent runs.

    Example:
        >>> driver = TurnDriver(provider, executor, plan_approver=approver)
        >>> result = await driver.run(history, settings, token, sink)
        >>> print(result.state, result.text)
    """

    def __init__(
        self,
        provider: ModelProvider,
        executor: ToolExecutor,
        *,
        plan_approver: PlanApprover | None = None,
        id_factory: IdGenerator = uuid_ids,
    ) -> None:
        """Initialize the driver.

        Args:
            provider: Model provider producing fragment streams.
            executor: Tool executor used by the dispatcher.
            plan_approver: Required for runs whose settings require plan approval.
            id_factory: Source of ToolCallEvent identifiers.
        """
        self._provider = provider
        self._executor = executor
        self._plan_approver = plan_approver
        self._id_factory = id_factory

    @property
    def provider(self) -> ModelProvider:
        return self._provider

    @property
    def executor(self) -> ToolExecutor:
        return self._executor

    def start(
        self,
        history: ConversationHistory | Iterable[Turn],
        settings: GenerationSettings,
        token: CancellationToken | None = None,
        sink: CallbackSink | None = None,
        *,
        timeout: float | None = None,
    ) -> RunHandle:
        """Start a run as a task on the running loop and return its handle.

        Configuration errors, including a non-positive ``timeout``, are raised
        here, before the task is created.
        """
        if timeout is not None and timeout <= 0:
            raise SettingsError(f"timeout must be positive, got {timeout}")
        token = token or CancellationToken()
        context = self._prepare(history, settings, token, sink)
        task = asyncio.get_running_loop().create_task(
            self._execute(context), name=f"agentloop-run-{context.run_id}"
        )
        handle = RunHandle(task, token, context.run_id)
        if timeout is not None:
            handle.cancel_after(timeout)
        return handle

    async def run(
        self,
        history: ConversationHistory | Iterable[Turn],
        settings: GenerationSettings,
        token: CancellationToken | None = None,
        sink: CallbackSink | None = None,
    ) -> RunResult:
        """Run until a terminal state is reached.

        Args:
            history: Initial conversation; the driver works on its own copy.
            settings: Validated per-run generation settings.
            token: Cancellation token shared with the caller.
            sink: Receiver for run events.

        Returns:
            The run result.

        Raises:
            SettingsError: If the run is misconfigured (raised before any callback).
        """
        context = self._prepare(history, settings, token or CancellationToken(), sink)
        return await self._execute(context)

    # ---- setup ----

    def _prepare(
        self,
        history: ConversationHistory | Iterable[Turn],
        settings: GenerationSettings,
        token: CancellationToken,
        sink: CallbackSink | None,
    ) -> _RunContext:
        if not isinstance(settings, GenerationSettings):
            raise SettingsError(f"settings must be GenerationSettings, got {type(settings).__name__}")
        working = history.copy() if isinstance(history, ConversationHistory) else ConversationHistory(history)
        if working.has_unanswered_calls():
            raise SettingsError("History ends with a model turn whose function calls are unanswered")

        plan_gate: PlanGate | None = None
        if settings.require_plan_approval:
            if self._plan_approver is None:
                raise SettingsError("Plan approval is required but no plan approver was configured")
            plan_gate = PlanGate(self._plan_approver)

        run_id = uuid.uuid4().hex[:8]
        return _RunContext(
            run_id=run_id,
            history=working,
            settings=settings,
            token=token,
            sink=CallbackGuard(sink, run_id=run_id),
            plan_gate=plan_gate,
        )

    # ---- main loop ----

    async def _execute(self, ctx: _RunContext) -> RunResult:
        LOGGER.info(
            "Run %s starting: %d history turn(s), %d tool(s), plan_gate=%s",
            ctx.run_id,
            len(ctx.history),
            len(ctx.settings.tools),
            ctx.plan_gate is not None,
        )
        try:
            return await self._loop(ctx)
        except asyncio.CancelledError:
            LOGGER.info("Run %s task cancelled", ctx.run_id)
            ctx.token.cancel()
            self._abort(ctx)
            raise
        except Exception as exc:
            if ctx.token.cancelled:
                return self._abort(ctx)
            LOGGER.exception("Run %s failed with an unexpected exception", ctx.run_id)
            return self._fail(ctx, classify_error(exc, ErrorKind.PROVIDER))

    async def _loop(self, ctx: _RunContext) -> RunResult:
        while True:
            if ctx.token.cancelled:
                return self._abort(ctx)
            if ctx.requests >= ctx.settings.max_turns:
                LOGGER.warning("Run %s reached max turns (%d)", ctx.run_id, ctx.settings.max_turns)
                return self._fail(
                    ctx,
                    ClassifiedError(
                        kind=ErrorKind.LIMIT,
                        code=ErrorCode.MAX_TURNS_EXCEEDED,
                        message="Turn Limit Reached",
                        details=f"The run issued {ctx.requests} model requests without finishing.",
                        suggestion="Raise max_turns or simplify the request.",
                    ),
                )

            ctx.transition(RunState.REQUESTING_MODEL)
            ctx.requests += 1
            try:
                fragments = await open_stream(self._provider, ctx.history.copy(), ctx.settings)
            except Exception as exc:
                if ctx.token.cancelled:
                    return self._abort(ctx)
                LOGGER.warning("Run %s: model request failed: %s", ctx.run_id, exc)
                return self._fail(ctx, classify_error(exc, ErrorKind.PROVIDER))

            if ctx.token.cancelled:
                await close_stream(fragments)
                return self._abort(ctx)

            ctx.transition(RunState.INTERPRETING_STREAM)
            outcome = await interpret(
                fragments,
                ctx.token,
                ctx.carried_text,
                plan_gate=ctx.plan_gate,
                on_text=ctx.sink.text_chunk,
            )
            result = await self._apply(ctx, outcome)
            if result is not None:
                return result

    async def _apply(self, ctx: _RunContext, outcome: TurnOutcome) -> RunResult | None:
        """Act on one turn outcome; return a result once the run is terminal."""
        if isinstance(outcome, AppendToolResults):
            return await self._run_tools(ctx, outcome)

        if isinstance(outcome, ContinueEditedPlan):
            ctx.transition(RunState.AWAITING_PLAN_EDIT)
            if ctx.plan_gate is not None:
                ctx.plan_gate.mark_approved()
            ctx.sink.text_chunk(outcome.text)
            ctx.history.append(Turn.model_text(outcome.text))
            ctx.history.append(Turn.caller_text(PLAN_APPROVED_PROMPT))
            ctx.carried_text = ""
            return None

        if isinstance(outcome, ContinueTruncated):
            ctx.transition(RunState.CONTINUING_TRUNCATED)
            ctx.history.append(Turn.model_text(outcome.turn_text))
            ctx.history.append(Turn.caller_text(CONTINUE_PROMPT))
            ctx.carried_text = outcome.accumulated_text
            LOGGER.debug("Run %s: continuing truncated output (%d chars so far)", ctx.run_id, len(ctx.carried_text))
            return None

        if isinstance(outcome, Complete):
            # Complete.text is the carried prefix followed by this turn's text
            ctx.history.append(Turn.model_text(outcome.text[len(ctx.carried_text):]))
            final_text = strip_sentinel(outcome.text).strip()
            ctx.transition(RunState.COMPLETED)
            ctx.sink.complete(final_text, outcome.grounding)
            return self._result(ctx, text=final_text, grounding=outcome.grounding)

        if isinstance(outcome, Failed):
            if ctx.token.cancelled:
                return self._abort(ctx)
            return self._fail(ctx, outcome.error)

        if isinstance(outcome, Aborted):
            if outcome.reason != "cancelled":
                LOGGER.info("Run %s aborted: %s", ctx.run_id, outcome.reason)
            return self._abort(ctx)

        raise TypeError(f"Unhandled turn outcome: {outcome!r}")

    async def _run_tools(self, ctx: _RunContext, outcome: AppendToolResults) -> RunResult | None:
        if ctx.token.cancelled:
            return self._abort(ctx)
        ctx.transition(RunState.DISPATCHING_TOOLS)

        events = create_tool_call_events(outcome.calls, self._id_factory)
        parts: list[Part] = [TextPart(outcome.text)] if outcome.text else []
        parts.extend(FunctionCallPart(call=event.call, call_id=event.id) for event in events)
        model_turn = Turn(role="model", parts=tuple(parts))

        ctx.sink.new_tool_calls(events)
        try:
            results = await dispatch(events, self._executor, ctx.token, on_result=ctx.sink.tool_result)
        except DispatchCancelled:
            return self._abort(ctx)

        if ctx.token.cancelled:
            LOGGER.info("Run %s: discarding %d tool result(s) after cancellation", ctx.run_id, len(results))
            return self._abort(ctx)

        # Calls and their answers are appended together so history never holds unanswered calls
        ctx.history.append(model_turn)
        ctx.history.append(Turn(role="caller", parts=tuple(r.to_part() for r in results)))
        ctx.carried_text = ""
        return None

    # ---- terminal helpers ----

    def _abort(self, ctx: _RunContext) -> RunResult:
        ctx.transition(RunState.ABORTED)
        ctx.sink.cancel()
        LOGGER.info("Run %s cancelled after %d request(s)", ctx.run_id, ctx.requests)
        return self._result(ctx)

    def _fail(self, ctx: _RunContext, error: ClassifiedError) -> RunResult:
        ctx.transition(RunState.FAILED)
        ctx.sink.error(error)
        LOGGER.warning("Run %s failed: %s", ctx.run_id, error)
        return self._result(ctx, error=error)

    def _result(
        self,
        ctx: _RunContext,
        *,
        text: str | None = None,
        grounding: GroundingMetadata | None = None,
        error: ClassifiedError | None = None,
    ) -> RunResult:
        duration_ms = (time.perf_counter() - ctx.started_at) * 1000
        if ctx.state is RunState.COMPLETED:
            LOGGER.info("Run %s completed in %.1fms after %d request(s)", ctx.run_id, duration_ms, ctx.requests)
        return RunResult(
            run_id=ctx.run_id,
            state=ctx.state,
            text=text,
            grounding=grounding,
            error=error,
            requests=ctx.requests,
            history=ctx.history.turns,
            duration_ms=duration_ms,
        )


async def run_conversation(
    provider: ModelProvider,
    executor: ToolExecutor,
    history: ConversationHistory | Iterable[Turn],
    settings: GenerationSettings,
    token: CancellationToken | None = None,
    sink: CallbackSink | None = None,
    *,
    plan_approver: PlanApprover | None = None,
    id_factory: IdGenerator = uuid_ids,
) -> RunResult:
    """Convenience wrapper: build a :class:`TurnDriver` and run it once."""
    driver = TurnDriver(provider, executor, plan_approver=plan_approver, id_factory=id_factory)
    return await driver.run(history, settings, token, sink)
