"""Sensor and profile collaborators polled by the recorder.

Each sensor exposes ``start()``/``stop()`` and instantaneous readings that are
``None`` until the first sample arrives. Readings are pushed with
``update()`` by whatever drives the sensor; the simulated variants generate
their own values from elapsed time for development and demonstration.
"""

from __future__ import annotations

import logging
import math
import random
import time
from abc import ABC
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

Vector = Tuple[Optional[float], Optional[float], Optional[float]]


@dataclass(frozen=True)
class UserProfile:
    """Read-only user profile fields written to the log header."""

    gender: Optional[str] = None
    resting_heart_rate: Optional[float] = None


class Sensor(ABC):
    """Common lifecycle for pollable sensors."""

    def __init__(self) -> None:
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        self._active = True
        logger.debug("%s started", type(self).__name__)

    def stop(self) -> None:
        self._active = False
        logger.debug("%s stopped", type(self).__name__)


class MotionSensor(Sensor):
    """Three-axis sensor; axes are None before the first reading."""

    def __init__(self) -> None:
        super().__init__()
        self._values: Vector = (None, None, None)

    def update(self, x: Optional[float], y: Optional[float], z: Optional[float]) -> None:
        self._values = (x, y, z)

    def clear(self) -> None:
        self._values = (None, None, None)

    def read(self) -> Vector:
        return self._values

    @property
    def x(self) -> Optional[float]:
        return self.read()[0]

    @property
    def y(self) -> Optional[float]:
        return self.read()[1]

    @property
    def z(self) -> Optional[float]:
        return self.read()[2]


class Accelerometer(MotionSensor):
    pass


class Gyroscope(MotionSensor):
    pass


class HeartRateMonitor(Sensor):
    def __init__(self) -> None:
        super().__init__()
        self._heart_rate: Optional[float] = None

    def update(self, heart_rate: Optional[float]) -> None:
        self._heart_rate = heart_rate

    def clear(self) -> None:
        self._heart_rate = None

    @property
    def heart_rate(self) -> Optional[float]:
        return self._heart_rate


class _SimulatedMixin:
    """Elapsed-time bookkeeping shared by the simulated sensors.

    Simulated sensors report nothing until started, then derive their values
    from the seconds elapsed since ``start()``.
    """

    _clock: Callable[[], float]
    _start_time: Optional[float] = None

    def _elapsed(self) -> Optional[float]:
        if self._start_time is None:
            return None
        return self._clock() - self._start_time


class SimulatedAccelerometer(_SimulatedMixin, Accelerometer):
    """Gravity on Z plus slow periodic motion and noise, in g."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, noise: float = 0.05):
        Accelerometer.__init__(self)
        self._clock = clock
        self._noise = noise

    def start(self) -> None:
        super().start()
        self._start_time = self._clock()

    def stop(self) -> None:
        super().stop()
        self._start_time = None

    def read(self) -> Vector:
        t = self._elapsed()
        if t is None:
            return (None, None, None)
        return (
            0.5 * math.sin(2 * math.pi * 0.5 * t) + random.gauss(0, self._noise),
            0.3 * math.cos(2 * math.pi * 0.3 * t) + random.gauss(0, self._noise),
            1.0 + 0.2 * math.sin(2 * math.pi * 0.1 * t) + random.gauss(0, self._noise),
        )


class SimulatedGyroscope(_SimulatedMixin, Gyroscope):
    """Rotational patterns with different amplitudes per axis, in deg/s."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, noise: float = 1.0):
        Gyroscope.__init__(self)
        self._clock = clock
        self._noise = noise

    def start(self) -> None:
        super().start()
        self._start_time = self._clock()

    def stop(self) -> None:
        super().stop()
        self._start_time = None

    def read(self) -> Vector:
        t = self._elapsed()
        if t is None:
            return (None, None, None)
        return (
            10.0 * math.sin(2 * math.pi * 0.8 * t) + random.gauss(0, self._noise),
            15.0 * math.cos(2 * math.pi * 0.6 * t) + random.gauss(0, self._noise),
            5.0 * math.sin(2 * math.pi * 0.4 * t) + random.gauss(0, self._noise),
        )


class SimulatedHeartRateMonitor(_SimulatedMixin, HeartRateMonitor):
    """Heart rate drifting around a base value, with occasional dropouts."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        base_rate: float = 72.0,
        dropout: float = 0.1,
    ):
        HeartRateMonitor.__init__(self)
        self._clock = clock
        self._base_rate = base_rate
        self._dropout = dropout

    def start(self) -> None:
        super().start()
        self._start_time = self._clock()

    def stop(self) -> None:
        super().stop()
        self._start_time = None

    @property
    def heart_rate(self) -> Optional[float]:
        t = self._elapsed()
        if t is None or random.random() < self._dropout:
            return None
        return round(self._base_rate + 8.0 * math.sin(2 * math.pi * 0.01 * t))


@dataclass
class SensorSuite:
    """The three sensors sampled on every recorder tick."""

    accelerometer: Accelerometer
    gyroscope: Gyroscope
    heart_rate_monitor: HeartRateMonitor

    def start(self) -> None:
        self.accelerometer.start()
        self.heart_rate_monitor.start()
        self.gyroscope.start()

    def stop(self) -> None:
        self.accelerometer.stop()
        self.heart_rate_monitor.stop()
        self.gyroscope.stop()

    @classmethod
    def simulated(cls, clock: Callable[[], float] = time.monotonic) -> "SensorSuite":
        return cls(
            accelerometer=SimulatedAccelerometer(clock),
            gyroscope=SimulatedGyroscope(clock),
            heart_rate_monitor=SimulatedHeartRateMonitor(clock),
        )
