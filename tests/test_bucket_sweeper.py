"""Tests for the background idle bucket sweeper."""

import asyncio
from unittest.mock import Mock

import pytest

from lms_gateway.app.services.rate_limit import (
    AdmissionController,
    BucketPolicy,
    BucketSweeper,
    TrafficClass,
)


@pytest.fixture
def controller(clock):
    policy = BucketPolicy.from_limits(per_minute=5)
    return AdmissionController(policies={tc: policy for tc in TrafficClass}, clock=clock)


def test_sweep_once_removes_idle(controller, clock):
    controller.admit("/api/lms/courses", "ip:10.0.0.1")
    clock.advance(60)
    controller.admit("/api/lms/courses", "ip:10.0.0.2")
    clock.advance(60)

    sweeper = BucketSweeper(controller, interval_seconds=1, idle_seconds=90)
    assert sweeper.sweep_once() == 1
    assert controller.registry.keys() == ["api:ip:10.0.0.2"]


def test_sweep_once_survives_errors():
    controller = Mock()
    controller.sweep.side_effect = RuntimeError("boom")

    sweeper = BucketSweeper(controller, interval_seconds=1, idle_seconds=90)
    assert sweeper.sweep_once() == 0


@pytest.mark.asyncio
async def test_start_and_stop(controller):
    sweeper = BucketSweeper(controller, interval_seconds=60, idle_seconds=90)
    assert sweeper.running is False

    await sweeper.start()
    assert sweeper.running is True

    await sweeper.stop()
    assert sweeper.running is False


@pytest.mark.asyncio
async def test_runs_periodically(controller, clock):
    controller.admit("/api/lms/courses", "ip:10.0.0.1")
    clock.advance(1000)

    sweeper = BucketSweeper(controller, interval_seconds=0.01, idle_seconds=90)
    await sweeper.start()
    for _ in range(100):
        if len(controller.registry) == 0:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert len(controller.registry) == 0


@pytest.mark.asyncio
async def test_stop_without_start_is_noop(controller):
    sweeper = BucketSweeper(controller, interval_seconds=60, idle_seconds=90)
    await sweeper.stop()
    assert sweeper.running is False
