"""Tests for the request pipeline stage."""

from __future__ import annotations

import pytest

from agentloop.orchestration.errors import ProviderError
from agentloop.orchestration.pipeline.request import open_stream
from agentloop.orchestration.types import ConversationHistory, FinishReason, Fragment, GenerationSettings, Turn

HISTORY = ConversationHistory([Turn.caller_text("hi")])


class GeneratorProvider:
    async def generate(self, history, settings):
        yield Fragment(text="hi")
        yield Fragment(finish_reason=FinishReason.STOP)


class CoroutineProvider:
    async def generate(self, history, settings):
        return GeneratorProvider().generate(history, settings)


class BrokenProvider:
    def generate(self, history, settings):
        return ["not", "async"]


class TestOpenStream:
    """Tests for open_stream."""

    @pytest.mark.asyncio
    async def test_async_generator_provider(self) -> None:
        stream = await open_stream(GeneratorProvider(), HISTORY, GenerationSettings())
        assert [f.text async for f in stream] == ["hi", None]

    @pytest.mark.asyncio
    async def test_coroutine_provider(self) -> None:
        stream = await open_stream(CoroutineProvider(), HISTORY, GenerationSettings())
        assert [f.text async for f in stream] == ["hi", None]

    @pytest.mark.asyncio
    async def test_non_async_result_is_rejected(self) -> None:
        with pytest.raises(ProviderError, match="expected an async iterator"):
            await open_stream(BrokenProvider(), HISTORY, GenerationSettings())
