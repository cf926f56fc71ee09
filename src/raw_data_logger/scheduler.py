"""Periodic tasks on the asyncio event loop.

The recorder's sampling tick and the file-handle watchdog both run as
``PeriodicTask`` instances. A task calls its callback every ``interval``
seconds until cancelled. If the callback raises, the error is logged and kept
on the task, and the task stops.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Cancellable repeating timer bound to an event loop."""

    def __init__(
        self,
        interval: float,
        callback: Callable[[], None],
        name: str = "periodic",
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        self._interval = interval
        self._callback = callback
        self._name = name
        self._loop = loop
        self._task: Optional[asyncio.Task] = None
        self._error: Optional[Exception] = None
        self._runs = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def runs(self) -> int:
        """Number of completed callback invocations."""
        return self._runs

    @property
    def error(self) -> Optional[Exception]:
        """Exception that stopped the task, if any."""
        return self._error

    def start(self) -> None:
        """Schedule the task; must be called from the loop's thread."""
        if self.active:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._error = None
        self._task = loop.create_task(self._run(), name=self._name)
        logger.debug("Started %s task every %.1fs", self._name, self._interval)

    def cancel(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            logger.debug("Cancelled %s task", self._name)
        self._task = None

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    self._callback()
                    self._runs += 1
                except Exception as e:
                    logger.error(f"Error in {self._name} task: {e}")
                    self._error = e
                    break
        except asyncio.CancelledError:
            pass
