from __future__ import annotations

from pathlib import Path
from typing import Iterator, List

import pytest

from raw_data_logger.log_store import LogStore
from raw_data_logger.sensors import (
    Accelerometer,
    Gyroscope,
    HeartRateMonitor,
    SensorSuite,
    UserProfile,
)

LOG_NAME = "RawDataLogger-20240101.txt"


class StepClock:
    """Millisecond clock advancing by a fixed step on every call."""

    def __init__(self, start: int = 1_000, step: int = 5_000) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value


class RecordingPeer:
    """Companion stand-in that keeps every delivered message across reconnects."""

    def __init__(self) -> None:
        self.messages: List[str] = []
        self.opened = 0
        self.closed = 0
        self.errors: List[Exception] = []

    def on_open(self) -> None:
        self.opened += 1

    def on_message(self, text: str) -> None:
        self.messages.append(text)

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)

    def on_close(self) -> None:
        self.closed += 1


@pytest.fixture
def store(tmp_path: Path) -> Iterator[LogStore]:
    log_store = LogStore(tmp_path, LOG_NAME)
    yield log_store
    log_store.close()


@pytest.fixture
def sensors() -> SensorSuite:
    suite = SensorSuite(
        accelerometer=Accelerometer(),
        gyroscope=Gyroscope(),
        heart_rate_monitor=HeartRateMonitor(),
    )
    suite.accelerometer.update(0.5, -0.25, 1.0)
    suite.gyroscope.update(10.5, -2.0, 0.75)
    suite.heart_rate_monitor.update(72)
    return suite


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(gender="male", resting_heart_rate=60)


@pytest.fixture
def clock() -> StepClock:
    return StepClock()
