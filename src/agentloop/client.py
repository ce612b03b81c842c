"""Model provider backed by OpenAI-compatible chat-completion endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIStatusError, RateLimitError
from openai.types.chat import ChatCompletionMessageParam
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .orchestration.errors import ProviderError
from .orchestration.types import (
    ConversationHistory,
    FinishReason,
    Fragment,
    FunctionCall,
    FunctionCallPart,
    FunctionResultPart,
    GenerationSettings,
    TextPart,
)

__all__ = ["ClientSettings", "OpenAIModelProvider", "history_to_messages", "map_finish_reason"]

LOGGER = logging.getLogger(__name__)

_FINISH_REASONS: Mapping[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "tool_calls": FinishReason.STOP,
    "function_call": FinishReason.STOP,
    "length": FinishReason.MAX_TOKENS,
    "content_filter": FinishReason.SAFETY,
}

# Key under which unparseable tool arguments are passed through to the tool
RAW_ARGUMENTS_KEY = "_raw_arguments"


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the provider."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


def map_finish_reason(value: str | None) -> FinishReason | None:
    """Translate a chat-completions finish reason."""
    if value is None:
        return None
    return _FINISH_REASONS.get(value, FinishReason.OTHER)


def history_to_messages(
    history: ConversationHistory,
    system_instruction: str = "",
) -> List[ChatCompletionMessageParam]:
    """Convert a conversation history to chat-completion messages.

    Caller text becomes ``user`` messages and function results become ``tool``
    messages keyed by call id. Model turns become ``assistant`` messages whose
    ``tool_calls`` carry the same ids.
    """
    messages: List[Dict[str, Any]] = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction})

    for turn in history:
        if turn.role == "caller":
            for part in turn.parts:
                if isinstance(part, FunctionResultPart):
                    messages.append({"role": "tool", "tool_call_id": part.call_id, "content": part.result})
            text = turn.text
            if text:
                messages.append({"role": "user", "content": text})
            continue

        message: Dict[str, Any] = {"role": "assistant", "content": turn.text or None}
        tool_calls = [
            {
                "id": part.call_id,
                "type": "function",
                "function": {
                    "name": part.call.name,
                    "arguments": json.dumps(dict(part.call.args), ensure_ascii=False),
                },
            }
            for part in turn.parts
            if isinstance(part, FunctionCallPart)
        ]
        if tool_calls:
            message["tool_calls"] = tool_calls
        elif message["content"] is None:
            message["content"] = ""
        messages.append(message)
    return messages  # type: ignore[return-value]


def _is_server_error(exc: BaseException) -> bool:
    return isinstance(exc, APIStatusError) and exc.status_code >= 500


def _parse_arguments(name: str, arguments: str) -> dict[str, Any]:
    if not arguments or arguments.strip() in ("", "{}"):
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Invalid JSON in arguments for tool %s: %s", name, exc)
        return {RAW_ARGUMENTS_KEY: arguments}
    if not isinstance(parsed, dict):
        LOGGER.warning("Arguments for tool %s are not an object: %s", name, type(parsed).__name__)
        return {RAW_ARGUMENTS_KEY: arguments}
    return parsed


class OpenAIModelProvider:
    """Model provider streaming from an OpenAI-compatible endpoint.

    ``generate`` opens the request (with retries on transient failures) before
    returning, so connection problems surface as provider errors; failures
    while reading the stream surface as stream errors.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def generate(
        self,
        history: ConversationHistory,
        settings: GenerationSettings,
    ) -> AsyncIterator[Fragment]:
        payload = self._build_chat_payload(history, settings)
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            payload["model"],
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        stream: Any = None
        async for attempt in self._retrying():
            with attempt:
                stream = await self._client.chat.completions.create(**payload)
        if stream is None:
            raise ProviderError("Chat completion request returned no stream")
        return self._iterate(stream)

    async def _iterate(self, stream: Any) -> AsyncIterator[Fragment]:
        tool_calls_by_index: dict[int, dict[str, Any]] = {}
        finish_reason: str | None = None
        try:
            async for chunk in stream:
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                delta = getattr(choice, "delta", None)
                if delta is not None:
                    content = getattr(delta, "content", None)
                    if content:
                        yield Fragment(text=str(content))
                    for tool_delta in getattr(delta, "tool_calls", None) or []:
                        self._accumulate_tool_call(tool_calls_by_index, tool_delta)
                if getattr(choice, "finish_reason", None):
                    finish_reason = choice.finish_reason
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                result = close()
                if inspect.isawaitable(result):
                    await result

        calls = tuple(
            FunctionCall(
                name=tc["name"],
                args=_parse_arguments(tc["name"], "".join(tc["arguments_parts"])),
                id=tc["id"] or None,
            )
            for _, tc in sorted(tool_calls_by_index.items())
            if tc["name"]
        )
        LOGGER.debug("Chat completion finished: reason=%s tool_calls=%d", finish_reason, len(calls))
        yield Fragment(function_calls=calls, finish_reason=map_finish_reason(finish_reason) or FinishReason.STOP)

    @staticmethod
    def _accumulate_tool_call(tool_calls_by_index: dict[int, dict[str, Any]], tool_delta: Any) -> None:
        index = getattr(tool_delta, "index", None)
        index = index if index is not None else 0
        entry = tool_calls_by_index.setdefault(index, {"id": "", "name": "", "arguments_parts": []})
        if getattr(tool_delta, "id", None):
            entry["id"] = tool_delta.id
        function = getattr(tool_delta, "function", None)
        if function is not None:
            if getattr(function, "name", None):
                entry["name"] = function.name
            if getattr(function, "arguments", None):
                entry["arguments_parts"].append(function.arguments)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        timeout = httpx.Timeout(settings.request_timeout) if settings.request_timeout else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=timeout,
            max_retries=0,
            default_headers=headers,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            )
            | retry_if_exception(_is_server_error),
        )

    def _build_chat_payload(self, history: ConversationHistory, settings: GenerationSettings) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": settings.model or self._settings.model,
            "messages": history_to_messages(history, settings.system_instruction),
            "stream": True,
        }
        if settings.tools:
            payload["tools"] = [spec.to_openai_tool() for spec in settings.tools]
        if settings.temperature is not None:
            payload["temperature"] = settings.temperature
        if settings.max_output_tokens is not None:
            payload["max_tokens"] = settings.max_output_tokens
        return payload

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Chat payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Chat payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""
        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result
