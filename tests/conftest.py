"""Shared fixtures for the LMS gateway tests."""

import pytest

from lms_gateway.app.services.metrics import reset_metrics_collector


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Each test starts with an empty metrics collector."""
    reset_metrics_collector()
    yield
    reset_metrics_collector()
