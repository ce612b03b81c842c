"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from agentloop.orchestration.cancellation import CancellationToken
from agentloop.orchestration.types import SequentialIds


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def sequential_ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture(autouse=True)
def _clear_agentloop_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer AGENTLOOP_* variables out of the tests."""
    import os

    for name in list(os.environ):
        if name.startswith("AGENTLOOP_"):
            monkeypatch.delenv(name, raising=False)
