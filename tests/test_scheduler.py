from __future__ import annotations

import asyncio

import pytest

from raw_data_logger.scheduler import PeriodicTask


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PeriodicTask(0, lambda: None)


def test_runs_until_cancelled() -> None:
    calls = []

    async def scenario() -> None:
        task = PeriodicTask(0.01, lambda: calls.append(1), name="test")
        task.start()
        assert task.active
        while len(calls) < 3:
            await asyncio.sleep(0.005)
        task.cancel()
        assert not task.active
        count = len(calls)
        await asyncio.sleep(0.05)
        assert len(calls) == count

    asyncio.run(scenario())
    assert len(calls) >= 3


def test_start_is_idempotent() -> None:
    calls = []

    async def scenario() -> None:
        task = PeriodicTask(0.01, lambda: calls.append(1))
        task.start()
        task.start()
        await asyncio.sleep(0.035)
        task.cancel()

    asyncio.run(scenario())
    # one task ticking every 10ms, not two
    assert 1 <= len(calls) <= 4


def test_callback_error_stops_task() -> None:
    def boom() -> None:
        raise RuntimeError("sensor gone")

    async def scenario() -> PeriodicTask:
        task = PeriodicTask(0.01, boom)
        task.start()
        await asyncio.sleep(0.05)
        return task

    task = asyncio.run(scenario())

    assert not task.active
    assert isinstance(task.error, RuntimeError)
    assert task.runs == 0


def test_cancel_before_start_is_harmless() -> None:
    PeriodicTask(1.0, lambda: None).cancel()
