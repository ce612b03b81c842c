"""Command-line entry point: run one prompt through the turn driver."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Sequence, TextIO

from .client import OpenAIModelProvider
from .config import SettingsStore, redact_secret
from .orchestration.callbacks import NullCallbackSink
from .orchestration.cancellation import CancellationToken
from .orchestration.errors import ClassifiedError, SettingsError
from .orchestration.plan import AutoApprover, PlanApprover, PlanDecision
from .orchestration.runner import RunState, TurnDriver
from .orchestration.tools import (
    DuplicateToolError,
    ExecutorConfig,
    RegistryToolExecutor,
    ToolImportError,
    ToolRegistry,
    load_tool,
)
from .orchestration.types import GroundingMetadata, ToolCallEvent, Turn
from .utils.logging import resolve_level, setup_logging

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


class TerminalSink(NullCallbackSink):
    """Streams run events to a terminal."""

    def __init__(self, out: TextIO | None = None, err: TextIO | None = None) -> None:
        self._out = out or sys.stdout
        self._err = err or sys.stderr
        self._printed = ""

    def on_text_chunk(self, accumulated_text: str) -> None:
        if accumulated_text.startswith(self._printed):
            self._out.write(accumulated_text[len(self._printed):])
        else:
            self._out.write("\n" + accumulated_text)
        self._printed = accumulated_text
        self._out.flush()

    def on_new_tool_calls(self, events: Sequence[ToolCallEvent]) -> None:
        for event in events:
            self._err.write(f"\n[tool] {event.call.name}({dict(event.call.args)}) id={event.id}\n")
        # Text after a tool turn starts a new model message
        self._printed = ""

    def on_tool_result(self, event_id: str, result: str) -> None:
        preview = result if len(result) <= 200 else result[:197] + "..."
        self._err.write(f"[tool] {event_id} -> {preview}\n")

    def on_complete(self, final_text: str, grounding: GroundingMetadata | None) -> None:
        self._out.write("\n")
        if grounding is not None:
            for source in grounding.sources:
                self._out.write(f"  source: {source.title or source.uri} <{source.uri}>\n")
        self._out.flush()

    def on_error(self, error: ClassifiedError) -> None:
        self._err.write(f"\nerror: {error}\n")
        if error.details:
            self._err.write(f"  {error.details}\n")
        if error.suggestion:
            self._err.write(f"  hint: {error.suggestion}\n")

    def on_cancel(self) -> None:
        self._err.write("\n[cancelled]\n")


class InteractivePlanApprover:
    """Asks on the terminal whether a proposed plan may run."""

    def __init__(self, out: TextIO | None = None) -> None:
        self._out = out or sys.stderr

    async def review(self, plan_text: str) -> PlanDecision:
        self._out.write("\n--- proposed plan ---\n")
        self._out.write(plan_text + "\n")
        self._out.write("---------------------\n")
        self._out.flush()
        answer = (await asyncio.to_thread(input, "Approve plan? [y]es / [n]o / [e]dit: ")).strip().lower()
        if answer in ("e", "edit"):
            edited = await asyncio.to_thread(self._read_edit)
            return PlanDecision.approve(edited or None)
        if answer in ("", "y", "yes"):
            return PlanDecision.approve()
        return PlanDecision.reject("rejected at the terminal")

    def _read_edit(self) -> str:
        self._out.write("Enter the edited plan; finish with a single '.' line.\n")
        self._out.flush()
        lines: list[str] = []
        while True:
            try:
                line = input()
            except EOFError:
                break
            if line.strip() == ".":
                break
            lines.append(line)
        return "\n".join(lines).strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentloop",
        description="Run a prompt through a tool-using, plan-gated model conversation.",
    )
    parser.add_argument("prompt", nargs="?", help="Prompt text. Reads stdin when omitted.")
    parser.add_argument("--settings", type=Path, help="Path to a settings JSON file.")
    parser.add_argument("--model", help="Model identifier.")
    parser.add_argument("--base-url", dest="base_url", help="OpenAI-compatible endpoint URL.")
    parser.add_argument("--temperature", type=float, help="Sampling temperature (0.0 to 2.0).")
    parser.add_argument("--max-output-tokens", dest="max_output_tokens", type=int, help="Output token budget per request.")
    parser.add_argument("--max-turns", dest="max_turns", type=int, help="Maximum model requests in the run.")
    parser.add_argument("--system", type=Path, help="File holding the system instruction.")
    parser.add_argument(
        "--require-plan-approval",
        dest="require_plan_approval",
        action="store_true",
        default=None,
        help="Pause for approval when the model proposes a plan.",
    )
    parser.add_argument(
        "--auto-approve",
        action="store_true",
        help="Approve proposed plans without asking (headless runs).",
    )
    parser.add_argument(
        "--tool",
        dest="tools",
        action="append",
        default=[],
        metavar="MODULE:FUNCTION",
        help="Offer a tool to the model (repeatable). The function receives the argument mapping.",
    )
    parser.add_argument("--timeout", type=float, help="Cancel the run after this many seconds.")
    parser.add_argument("--log-level", default=None, help="Logging level (default: AGENTLOOP_LOG_LEVEL or WARNING).")
    parser.add_argument("--log-dir", type=Path, help="Directory for the rotating log file.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(resolve_level(args.log_level, logging.WARNING), log_dir=args.log_dir, console=False)

    prompt = args.prompt if args.prompt is not None else sys.stdin.read().strip()
    if not prompt:
        print("No prompt provided.", file=sys.stderr)
        return EXIT_USAGE

    overrides: dict[str, Any] = {
        "model": args.model,
        "base_url": args.base_url,
        "temperature": args.temperature,
        "max_output_tokens": args.max_output_tokens,
        "max_turns": args.max_turns,
        "require_plan_approval": args.require_plan_approval,
    }
    if args.system is not None:
        overrides["system_instruction"] = args.system.read_text(encoding="utf-8")
    settings = SettingsStore(args.settings).load(overrides=overrides)
    LOGGER.info("Using model %s at %s (key %s)", settings.model, settings.base_url, redact_secret(settings.api_key))

    if args.timeout is not None and args.timeout <= 0:
        print(f"Invalid timeout: {args.timeout} (must be positive)", file=sys.stderr)
        return EXIT_USAGE

    registry = ToolRegistry()
    try:
        for reference in args.tools:
            registry.register(load_tool(reference))
    except (ToolImportError, DuplicateToolError) as exc:
        print(f"Invalid tool: {exc}", file=sys.stderr)
        return EXIT_USAGE

    try:
        generation = settings.to_generation_settings(registry.declarations())
    except SettingsError as exc:
        print(f"Invalid settings: {exc}", file=sys.stderr)
        return EXIT_USAGE
    LOGGER.info("Offering %d tool(s): %s", len(registry), registry.list_names())

    approver: PlanApprover = AutoApprover() if args.auto_approve else InteractivePlanApprover()
    provider = OpenAIModelProvider(settings.to_client_settings())
    executor = RegistryToolExecutor(registry, ExecutorConfig(default_timeout=settings.tool_timeout))
    driver = TurnDriver(provider, executor, plan_approver=approver)

    return asyncio.run(_run(driver, provider, [Turn.caller_text(prompt)], generation, args.timeout))


async def _run(driver: TurnDriver, provider: OpenAIModelProvider, history, generation, timeout) -> int:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError):
        LOGGER.debug("SIGINT handler unavailable; Ctrl-C will interrupt the process")

    try:
        handle = driver.start(history, generation, token, TerminalSink(), timeout=timeout)
        result = await handle
    finally:
        await provider.aclose()

    if result.state is RunState.COMPLETED:
        return EXIT_OK
    if result.state is RunState.ABORTED:
        return EXIT_CANCELLED
    return EXIT_FAILED


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
