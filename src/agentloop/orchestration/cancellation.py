"""Cooperative cancellation for a single run."""

from __future__ import annotations

import logging
import threading

__all__ = ["CancellationToken"]

LOGGER = logging.getLogger(__name__)


class CancellationToken:
    """Monotonic "aborted" flag shared between a caller and one run.

    Once :meth:`cancel` has been called the token stays set; there is no reset.
    The driver and its components poll :attr:`cancelled` between suspension
    points. Safe to cancel from any thread.

    Example:
        token = CancellationToken()
        handle = driver.start(history, settings, token=token)
        token.cancel()
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        """True once cancellation has been requested."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        if self._event.is_set():
            return
        self._event.set()
        LOGGER.debug("Cancellation requested")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
