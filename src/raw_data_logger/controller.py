"""Record / prepare / send state machine behind the primary control action.

The primary action cycles ``idle -> recording -> readyToSend -> sending``;
the transfer engine itself moves ``sending -> idle`` when the last row has
been sent. A secondary action, valid only while idle, decodes the current log
file for local inspection without transferring it.

All methods must run on the event loop thread that owns the recorder's
periodic tasks.
"""

import logging
from typing import Callable, List, Optional

from .channel import MessageChannel
from .config import LoggerConfig
from .errors import StorageError
from .log_store import LogStore
from .recorder import Recorder, epoch_millis
from .row_codec import Row, SampleRow
from .sensors import SensorSuite
from .session import Phase, Session
from .transfer import TransferEngine

logger = logging.getLogger(__name__)


class SessionController:
    """Maps the 3-cycle control action onto recorder and transfer engine."""

    def __init__(
        self,
        store: LogStore,
        recorder: Recorder,
        engine: TransferEngine,
        session: Session,
        on_change: Optional[Callable[[Phase], None]] = None,
    ):
        self._store = store
        self._recorder = recorder
        self._engine = engine
        self._session = session
        self._on_change = on_change
        self._wire_channel()

    def _wire_channel(self) -> None:
        channel = self._engine.channel
        channel.on_buffered_amount_decrease = self._on_buffered_amount_decrease
        channel.on_open = self._on_channel_open
        channel.on_error = self._engine.handle_channel_error
        channel.on_close = self._engine.handle_channel_close

    @property
    def session(self) -> Session:
        return self._session

    @property
    def phase(self) -> Phase:
        return self._session.phase

    @property
    def recorder(self) -> Recorder:
        return self._recorder

    @property
    def engine(self) -> TransferEngine:
        return self._engine

    @property
    def store(self) -> LogStore:
        return self._store

    @property
    def label(self) -> str:
        """Text shown on the primary control for the current phase."""
        phase = self._session.phase
        if phase is Phase.RECORDING:
            return "Stop"
        if phase is Phase.READY_TO_SEND:
            return "Send"
        if phase is Phase.SENDING:
            return f"Sending {self._session.progress * 100:.2f}%"
        return "Record"

    def start(self) -> None:
        """Arm the file-handle watchdog at application start."""
        self._recorder.arm_watchdog()

    def press(self) -> Phase:
        """Advance the state machine by one primary action."""
        phase = self._session.phase
        logger.debug(f"press: current phase = {phase.value}")

        if phase is Phase.IDLE:
            self._start_recording()
        elif phase is Phase.RECORDING:
            self._stop_recording()
        elif phase is Phase.READY_TO_SEND:
            self._start_sending()
        else:
            logger.info("Transfer in progress; control action ignored")
        return self._session.phase

    def _start_recording(self) -> None:
        self._session.reset()
        self._session.filename = self._store.filename
        try:
            self._recorder.start()
        except StorageError as e:
            logger.error(f"Couldn't start recording: {e}")
            self._recorder.stop()
            self._session.error = str(e)
            return
        self._recorder.arm_watchdog()
        self._set_phase(Phase.RECORDING)

    def _stop_recording(self) -> None:
        self._recorder.stop()
        self._recorder.disarm_watchdog()
        self._store.flush_and_close()
        self._set_phase(Phase.READY_TO_SEND)

    def _start_sending(self) -> None:
        try:
            self._engine.begin(self._session.filename)
        except StorageError as e:
            logger.error(f"Couldn't start transfer: {e}")
            self._session.error = str(e)
            self._session.phase = Phase.READY_TO_SEND
            return
        self._notify()

    def _on_buffered_amount_decrease(self) -> None:
        if self._session.phase is not Phase.SENDING:
            return
        self._engine.continue_sending()
        if self._session.phase is not Phase.SENDING:
            self._notify()

    def _on_channel_open(self) -> None:
        if self._session.phase is not Phase.SENDING:
            return
        self._engine.resume()
        if self._session.phase is not Phase.SENDING:
            self._notify()

    def read_local(self) -> List[Row]:
        """Decode the current log file for local inspection (idle only).

        Raises:
            RuntimeError: If called outside the idle phase.
            StorageError: If the log file is missing or unreadable.
        """
        if self._session.phase is not Phase.IDLE:
            raise RuntimeError(
                f"Log can only be read while idle (phase={self._session.phase.value})"
            )
        rows = list(self._store.iter_rows(self._session.filename))
        for index, row in enumerate(rows):
            logger.debug("Row %d : %s", index + 1, row)
        logger.info(f"Read {len(rows)} rows from {self._store.path(self._session.filename)}")
        return rows

    def shutdown(self) -> None:
        """Cancel every timer and release the log file handles."""
        self._recorder.cancel_timers()
        self._store.close()
        logger.info("Session controller shut down")

    def _set_phase(self, phase: Phase) -> None:
        self._session.phase = phase
        self._notify()

    def _notify(self) -> None:
        logger.info(f"Phase: {self._session.phase.value}")
        if self._on_change is not None:
            self._on_change(self._session.phase)


def create_controller(
    config: LoggerConfig,
    channel: MessageChannel,
    sensors: Optional[SensorSuite] = None,
    clock: Callable[[], int] = epoch_millis,
    on_change: Optional[Callable[[Phase], None]] = None,
    on_sample: Optional[Callable[[SampleRow], None]] = None,
) -> SessionController:
    """Assemble store, recorder, engine and controller from a config."""
    store = LogStore(config.data_dir)
    session = Session(filename=store.filename)
    recorder = Recorder(
        store,
        sensors or SensorSuite.simulated(),
        config.profile,
        tick_interval=config.tick_interval,
        watchdog_interval=config.watchdog_interval,
        clock=clock,
        on_sample=on_sample,
    )
    engine = TransferEngine(store, channel, session, watermark=config.watermark)
    return SessionController(store, recorder, engine, session, on_change=on_change)
