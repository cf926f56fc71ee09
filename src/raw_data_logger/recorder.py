"""Sensor polling loop that appends one binary row per tick.

The recorder owns two periodic tasks:

- the sampling tick (every ``tick_interval`` seconds) that reads the three
  sensors, encodes a sample row and appends it to the log;
- the watchdog (every ``watchdog_interval`` seconds) that force-closes the
  append handle whether or not a recording is running, so the OS-level file
  handle is released periodically even after an abnormal shutdown.
"""

import logging
import time
from collections import deque
from typing import Callable, List, Optional

from .log_store import LogStore
from .row_codec import HeaderRow, SampleRow
from .scheduler import PeriodicTask
from .sensors import SensorSuite, UserProfile

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 5.0
DEFAULT_WATCHDOG_INTERVAL = 25.0


def epoch_millis() -> int:
    return int(time.time() * 1000)


class Recorder:
    """Writes the header row and then periodic sample rows to a LogStore."""

    def __init__(
        self,
        store: LogStore,
        sensors: SensorSuite,
        profile: UserProfile,
        *,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        watchdog_interval: float = DEFAULT_WATCHDOG_INTERVAL,
        clock: Callable[[], int] = epoch_millis,
        buffer_size: int = 720,
        on_sample: Optional[Callable[[SampleRow], None]] = None,
    ):
        self._store = store
        self._sensors = sensors
        self._profile = profile
        self._clock = clock
        self._on_sample = on_sample
        self._tick = PeriodicTask(tick_interval, self.tick, name="recorder-tick")
        self._watchdog = PeriodicTask(
            watchdog_interval, self._store.flush_and_close, name="file-watchdog"
        )
        self._buffer: deque[SampleRow] = deque(maxlen=buffer_size)
        self._header: Optional[HeaderRow] = None
        self._rows_written = 0

    @property
    def recording(self) -> bool:
        return self._tick.active

    @property
    def tick_task(self) -> PeriodicTask:
        return self._tick

    @property
    def watchdog_task(self) -> PeriodicTask:
        return self._watchdog

    @property
    def header(self) -> Optional[HeaderRow]:
        return self._header

    @property
    def rows_written(self) -> int:
        """Rows appended in the current session, header included."""
        return self._rows_written

    @property
    def last_sample(self) -> Optional[SampleRow]:
        return self._buffer[-1] if self._buffer else None

    def recent_samples(self, count: Optional[int] = None) -> List[SampleRow]:
        samples = list(self._buffer)
        return samples if count is None else samples[-count:]

    def start(self) -> None:
        """Reset the day's log, write the header and begin sampling."""
        self._store.flush_and_close()
        self._store.delete_if_exists()
        self._buffer.clear()
        self._rows_written = 0

        self.write_header()
        self._sensors.start()
        self._tick.start()
        logger.info(
            f"Recording started: {self._store.path()} "
            f"(every {self._tick.interval:.1f}s)"
        )

    def write_header(self) -> HeaderRow:
        header = HeaderRow.from_profile(
            self._clock(), self._profile.gender, self._profile.resting_heart_rate
        )
        logger.debug(
            "Row 1 data : Gender: %d, HR: %d, Time: %d",
            header.gender,
            header.resting_heart_rate,
            header.timestamp,
        )
        self._store.append_row(header.encode())
        self._header = header
        self._rows_written += 1
        return header

    def tick(self) -> SampleRow:
        """Sample every sensor once and append the encoded row."""
        accel = self._sensors.accelerometer.read()
        gyro = self._sensors.gyroscope.read()
        heart_rate = self._sensors.heart_rate_monitor.heart_rate

        row = SampleRow.from_readings(self._clock(), heart_rate, accel, gyro)
        self._store.append_row(row.encode())
        self._rows_written += 1
        self._buffer.append(row)

        if self._on_sample is not None:
            self._on_sample(row)
        return row

    def stop(self) -> None:
        """Cancel the tick, stop the sensors and close the log file."""
        self._tick.cancel()
        self._sensors.stop()
        self._store.flush_and_close()
        logger.info(f"Recording stopped: {self._rows_written} rows written")

    def arm_watchdog(self) -> None:
        self._watchdog.start()

    def disarm_watchdog(self) -> None:
        self._watchdog.cancel()

    def cancel_timers(self) -> None:
        self._tick.cancel()
        self._watchdog.cancel()
