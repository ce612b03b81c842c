"""Tests for the OpenAI-compatible model provider."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Sequence

import httpx
import openai
import pytest

from agentloop.client import (
    RAW_ARGUMENTS_KEY,
    ClientSettings,
    OpenAIModelProvider,
    history_to_messages,
    map_finish_reason,
)
from agentloop.orchestration.pipeline.request import ModelProvider, open_stream
from agentloop.orchestration.tools import ToolSpec
from agentloop.orchestration.types import (
    ConversationHistory,
    FinishReason,
    Fragment,
    FunctionCall,
    FunctionCallPart,
    FunctionResultPart,
    GenerationSettings,
    TextPart,
    Turn,
)

_REQUEST = httpx.Request("POST", "https://api.example.test/v1/chat/completions")


# =============================================================================
# Test Fixtures and Mocks
# =============================================================================


def chunk(
    content: str | None = None,
    *,
    tool_calls: Sequence[Any] | None = None,
    finish_reason: str | None = None,
) -> SimpleNamespace:
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def tool_delta(index: int, *, id: str | None = None, name: str | None = None, arguments: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


class FakeStream:
    """Async iterable of chat-completion chunks with a close hook."""

    def __init__(self, chunks: Sequence[Any]) -> None:
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self._chunks:
            yield item

    async def close(self) -> None:
        self.closed = True


class FakeCompletions:
    """Replays queued outcomes for ``chat.completions.create``."""

    def __init__(self, outcomes: Sequence[FakeStream | Exception]) -> None:
        self._outcomes = list(outcomes)
        self.payloads: list[dict[str, Any]] = []

    async def create(self, **payload: Any) -> FakeStream:
        self.payloads.append(payload)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def fake_client(*outcomes: FakeStream | Exception) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(outcomes)))


def client_settings(**overrides: Any) -> ClientSettings:
    values: dict[str, Any] = {
        "base_url": "https://api.example.test/v1",
        "api_key": "sk-test",
        "model": "test-model",
        "max_retries": 3,
        "retry_min_seconds": 0.0,
        "retry_max_seconds": 0.0,
    }
    values.update(overrides)
    return ClientSettings(**values)


async def collect(stream: Any) -> list[Fragment]:
    return [fragment async for fragment in stream]


HISTORY = ConversationHistory([Turn.caller_text("2+2?")])


# =============================================================================
# Message Conversion
# =============================================================================


class TestHistoryToMessages:
    """Tests for history_to_messages."""

    def test_full_conversation(self) -> None:
        call = FunctionCall(name="calculator", args={"expression": "2+2"})
        history = ConversationHistory(
            [
                Turn.caller_text("2+2?"),
                Turn(role="model", parts=(TextPart("Checking."), FunctionCallPart(call, "calculator-1"))),
                Turn(role="caller", parts=(FunctionResultPart("calculator", "4", "calculator-1"),)),
                Turn.model_text("The answer is 4"),
            ]
        )

        messages = history_to_messages(history, "Be terse.")

        assert messages[0] == {"role": "system", "content": "Be terse."}
        assert messages[1] == {"role": "user", "content": "2+2?"}
        assert messages[2]["role"] == "assistant"
        assert messages[2]["content"] == "Checking."
        tool_call = messages[2]["tool_calls"][0]
        assert tool_call["id"] == "calculator-1"
        assert tool_call["function"]["name"] == "calculator"
        assert json.loads(tool_call["function"]["arguments"]) == {"expression": "2+2"}
        assert messages[3] == {"role": "tool", "tool_call_id": "calculator-1", "content": "4"}
        assert messages[4] == {"role": "assistant", "content": "The answer is 4"}

    def test_calls_without_text_have_null_content(self) -> None:
        call = FunctionCall(name="search")
        history = ConversationHistory([Turn(role="model", parts=(FunctionCallPart(call, "search-1"),))])
        assert history_to_messages(history)[0]["content"] is None

    def test_no_system_message_when_empty(self) -> None:
        assert history_to_messages(HISTORY) == [{"role": "user", "content": "2+2?"}]


class TestMapFinishReason:
    """Tests for map_finish_reason."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("stop", FinishReason.STOP),
            ("tool_calls", FinishReason.STOP),
            ("length", FinishReason.MAX_TOKENS),
            ("content_filter", FinishReason.SAFETY),
            ("something_new", FinishReason.OTHER),
            (None, None),
        ],
    )
    def test_mapping(self, raw: str | None, expected: FinishReason | None) -> None:
        assert map_finish_reason(raw) is expected


# =============================================================================
# Streaming
# =============================================================================


class TestOpenAIModelProvider:
    """Tests for OpenAIModelProvider with a fake client."""

    def test_satisfies_provider_protocol(self) -> None:
        provider = OpenAIModelProvider(client_settings(), client=fake_client())  # type: ignore[arg-type]
        assert isinstance(provider, ModelProvider)

    @pytest.mark.asyncio
    async def test_text_stream(self) -> None:
        stream = FakeStream([chunk("The answer "), chunk("is 4."), chunk(finish_reason="stop")])
        provider = OpenAIModelProvider(client_settings(), client=fake_client(stream))  # type: ignore[arg-type]

        fragments = await collect(await provider.generate(HISTORY, GenerationSettings()))

        assert [f.text for f in fragments[:-1]] == ["The answer ", "is 4."]
        assert fragments[-1] == Fragment(finish_reason=FinishReason.STOP)
        assert stream.closed

    @pytest.mark.asyncio
    async def test_tool_call_deltas_are_aggregated(self) -> None:
        stream = FakeStream(
            [
                chunk(tool_calls=[tool_delta(0, id="call_a", name="calculator", arguments='{"expr')]),
                chunk(tool_calls=[tool_delta(1, id="call_b", name="search", arguments="{}")]),
                chunk(tool_calls=[tool_delta(0, arguments='ession": "2+2"}')]),
                chunk(finish_reason="tool_calls"),
            ]
        )
        provider = OpenAIModelProvider(client_settings(), client=fake_client(stream))  # type: ignore[arg-type]

        fragments = await collect(await provider.generate(HISTORY, GenerationSettings()))

        assert len(fragments) == 1
        assert fragments[0].function_calls == (
            FunctionCall(name="calculator", args={"expression": "2+2"}, id="call_a"),
            FunctionCall(name="search", args={}, id="call_b"),
        )
        assert fragments[0].finish_reason is FinishReason.STOP

    @pytest.mark.asyncio
    async def test_invalid_arguments_pass_through(self) -> None:
        stream = FakeStream(
            [
                chunk(tool_calls=[tool_delta(0, id="call_a", name="calculator", arguments="2+2")]),
                chunk(finish_reason="tool_calls"),
            ]
        )
        provider = OpenAIModelProvider(client_settings(), client=fake_client(stream))  # type: ignore[arg-type]

        fragments = await collect(await provider.generate(HISTORY, GenerationSettings()))

        assert fragments[0].function_calls[0].args == {RAW_ARGUMENTS_KEY: "2+2"}

    @pytest.mark.asyncio
    async def test_length_maps_to_max_tokens(self) -> None:
        stream = FakeStream([chunk("Lorem ipsum"), chunk(finish_reason="length")])
        provider = OpenAIModelProvider(client_settings(), client=fake_client(stream))  # type: ignore[arg-type]

        fragments = await collect(await provider.generate(HISTORY, GenerationSettings()))

        assert fragments[-1].finish_reason is FinishReason.MAX_TOKENS

    @pytest.mark.asyncio
    async def test_chunks_without_choices_are_skipped(self) -> None:
        stream = FakeStream([SimpleNamespace(choices=[]), chunk("hi"), chunk(finish_reason="stop")])
        provider = OpenAIModelProvider(client_settings(), client=fake_client(stream))  # type: ignore[arg-type]

        fragments = await collect(await provider.generate(HISTORY, GenerationSettings()))

        assert [f.text for f in fragments] == ["hi", None]

    @pytest.mark.asyncio
    async def test_payload(self) -> None:
        client = fake_client(FakeStream([chunk(finish_reason="stop")]))
        provider = OpenAIModelProvider(client_settings(), client=client)  # type: ignore[arg-type]
        settings = GenerationSettings(
            temperature=0.4,
            max_output_tokens=256,
            system_instruction="Be terse.",
            tools=(ToolSpec(name="calculator", description="Evaluate arithmetic"),),
        )

        await collect(await provider.generate(HISTORY, settings))

        payload = client.chat.completions.payloads[0]
        assert payload["model"] == "test-model"
        assert payload["stream"] is True
        assert payload["temperature"] == 0.4
        assert payload["max_tokens"] == 256
        assert payload["messages"][0] == {"role": "system", "content": "Be terse."}
        assert payload["tools"][0]["function"]["name"] == "calculator"

    @pytest.mark.asyncio
    async def test_model_override(self) -> None:
        client = fake_client(FakeStream([chunk(finish_reason="stop")]))
        provider = OpenAIModelProvider(client_settings(), client=client)  # type: ignore[arg-type]

        await collect(await provider.generate(HISTORY, GenerationSettings(model="other-model")))

        payload = client.chat.completions.payloads[0]
        assert payload["model"] == "other-model"
        assert "tools" not in payload
        assert "temperature" not in payload

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self) -> None:
        client = fake_client(
            openai.APIConnectionError(request=_REQUEST),
            FakeStream([chunk("ok"), chunk(finish_reason="stop")]),
        )
        provider = OpenAIModelProvider(client_settings(), client=client)  # type: ignore[arg-type]

        fragments = await collect(await provider.generate(HISTORY, GenerationSettings()))

        assert fragments[0].text == "ok"
        assert len(client.chat.completions.payloads) == 2

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self) -> None:
        error = openai.AuthenticationError("bad key", response=httpx.Response(401, request=_REQUEST), body=None)
        client = fake_client(error, FakeStream([]))
        provider = OpenAIModelProvider(client_settings(), client=client)  # type: ignore[arg-type]

        with pytest.raises(openai.AuthenticationError):
            await provider.generate(HISTORY, GenerationSettings())
        assert len(client.chat.completions.payloads) == 1

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self) -> None:
        client = fake_client(*[openai.APIConnectionError(request=_REQUEST) for _ in range(3)])
        provider = OpenAIModelProvider(client_settings(max_retries=2), client=client)  # type: ignore[arg-type]

        with pytest.raises(openai.APIConnectionError):
            await provider.generate(HISTORY, GenerationSettings())
        assert len(client.chat.completions.payloads) == 2

    @pytest.mark.asyncio
    async def test_open_stream_accepts_provider(self) -> None:
        client = fake_client(FakeStream([chunk("hi"), chunk(finish_reason="stop")]))
        provider = OpenAIModelProvider(client_settings(), client=client)  # type: ignore[arg-type]

        stream = await open_stream(provider, HISTORY, GenerationSettings())

        assert [f.text for f in await collect(stream)] == ["hi", None]

    @pytest.mark.asyncio
    async def test_builds_real_client(self) -> None:
        provider = OpenAIModelProvider(client_settings(default_headers={"X-Test": "1"}))
        await provider.aclose()
