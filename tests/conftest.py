"""
Shared pytest fixtures and configuration for converge-core tests.

This module provides:
- Location-based markers (unit / integration)
- A fake monotonic clock whose ``sleep`` advances time instantly
- Pollers and limiters wired to that clock
- Settings isolation (no ``CONVERGE_*`` leakage between tests)

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments:

    def test_something(poller, fake_clock):
        poller.run(action, SHORT_READ)
        assert fake_clock.now == 10.0
"""

import os
from pathlib import Path
from typing import Generator

import pytest

from converge.core.settings import clear_settings_cache
from converge.execution.rate_limit import ActionRateLimiter
from converge.execution.retry import RetryPoller

from tests._support.fake_remote import FakeRemoteService


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fake time
# =============================================================================


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def total_slept(self) -> float:
        return sum(self.sleeps)


@pytest.fixture
def fake_clock() -> FakeClock:
    """A fresh fake clock starting at t=0."""
    return FakeClock()


@pytest.fixture
def poller(fake_clock: FakeClock) -> RetryPoller:
    """RetryPoller running on the fake clock."""
    return RetryPoller(clock=fake_clock, sleep=fake_clock.sleep)


@pytest.fixture
def limiter() -> ActionRateLimiter:
    """A limiter generous enough that tests never wait on it."""
    return ActionRateLimiter(default_rate=10_000, default_burst=10_000)


@pytest.fixture
def remote() -> FakeRemoteService:
    """An empty scripted remote service."""
    return FakeRemoteService()


# =============================================================================
# Settings isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Strip ``CONVERGE_*`` variables and the settings cache around each test."""
    for key in list(os.environ):
        if key.startswith("CONVERGE_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()
