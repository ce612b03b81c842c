"""Pipeline stage: Request.

Asks the model provider for one turn's fragment stream.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Protocol, Union, runtime_checkable

from ..errors import ProviderError
from ..types import ConversationHistory, Fragment, GenerationSettings

__all__ = ["ModelProvider", "FragmentStream", "open_stream"]

LOGGER = logging.getLogger(__name__)

FragmentStream = AsyncIterator[Fragment]


@runtime_checkable
class ModelProvider(Protocol):
    """Produces the fragment stream of one model turn.

    ``generate`` may be an async generator function, or a coroutine that
    resolves to an async iterator once the request is accepted. The stream is
    lazy, finite and consumed once; the final fragment carries the finish
    reason.
    """

    def generate(
        self,
        history: ConversationHistory,
        settings: GenerationSettings,
    ) -> Union[FragmentStream, Awaitable[FragmentStream]]:
        ...


async def open_stream(
    provider: ModelProvider,
    history: ConversationHistory,
    settings: GenerationSettings,
) -> FragmentStream:
    """Start a model request and return its fragment stream.

    Raises:
        ProviderError: If the provider rejects the request or returns something
            that is not an async iterator.
    """
    LOGGER.debug("Requesting model turn with %d history turn(s)", len(history))
    result: Any = provider.generate(history, settings)
    if inspect.isawaitable(result) and not hasattr(result, "__anext__"):
        result = await result
    if not hasattr(result, "__aiter__"):
        raise ProviderError(
            f"Model provider returned {type(result).__name__}, expected an async iterator"
        )
    return result.__aiter__()
