"""Flow-controlled transfer of a log file to the companion.

The engine sends one text message per row, strictly in row order starting
with the header. A drain step keeps sending while the channel reports fewer
than ``watermark`` buffered bytes, then returns; the channel's
buffered-amount-decrease notification triggers the next drain step. The
transfer ends when every row has been sent, at which point the session goes
back to idle.

Failure handling:

- channel closed mid-transfer: the transfer pauses in ``sending`` and
  ``resume()`` continues from the next unsent row once the channel reopens;
- channel error event: logged, the transfer stays where it is (no retry);
- storage failure while reading: the transfer is aborted and the session
  returns to ``readyToSend`` so it can be started again.
"""

import logging
from typing import Callable, Optional

from .channel import MessageChannel
from .errors import ChannelError, StorageError
from .log_store import LogStore
from .row_codec import decode_row
from .session import Phase, Session

logger = logging.getLogger(__name__)

DEFAULT_WATERMARK = 128


class TransferEngine:
    """Drains a LogStore file over a MessageChannel."""

    def __init__(
        self,
        store: LogStore,
        channel: MessageChannel,
        session: Session,
        *,
        watermark: int = DEFAULT_WATERMARK,
        on_progress: Optional[Callable[[float], None]] = None,
        on_complete: Optional[Callable[[], None]] = None,
    ):
        self._store = store
        self._channel = channel
        self._session = session
        self._watermark = watermark
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._draining = False
        self._filename: Optional[str] = None

    @property
    def channel(self) -> MessageChannel:
        return self._channel

    @property
    def watermark(self) -> int:
        return self._watermark

    @property
    def progress(self) -> float:
        return self._session.progress

    def begin(self, filename: Optional[str] = None) -> None:
        """Start transferring ``filename`` (the store's file by default).

        Raises:
            StorageError: If the file cannot be inspected or opened.
        """
        name = filename or self._store.filename
        stats = self._store.stat(name)
        logger.info(
            f"Transfer starting: {name}, {stats.rows} rows ({stats.size / 1024:.1f}kb)"
        )

        self._filename = name
        self._session.filename = name
        self._session.rows_total = stats.rows
        self._session.rows_sent = 0
        self._session.error = None
        self._session.phase = Phase.SENDING

        if stats.rows == 0:
            self._finish()
            return

        # Open the read handle up front so a missing file fails here.
        try:
            self._store.read_row_at(0, name)
        except StorageError as e:
            self._abort(e)
            raise
        self.continue_sending()

    def continue_sending(self) -> None:
        """Run one drain step; safe to call at any time."""
        if self._session.phase is not Phase.SENDING:
            return
        if self._draining:
            return
        if not self._channel.is_open:
            logger.debug("Transfer paused: channel %s", self._channel.ready_state.value)
            return

        logger.debug(
            f"continue_sending: buffered_amount={self._channel.buffered_amount}"
        )
        self._draining = True
        try:
            while (
                self._session.rows_sent < self._session.rows_total
                and self._channel.buffered_amount < self._watermark
            ):
                self._send_next_row()
        except StorageError as e:
            self._abort(e)
            return
        except ChannelError as e:
            logger.warning(f"Transfer paused after channel failure: {e}")
            self._session.error = str(e)
            return
        finally:
            self._draining = False

        if self._session.rows_sent >= self._session.rows_total:
            self._finish()

    def _send_next_row(self) -> None:
        index = self._session.rows_sent
        row = decode_row(self._store.read_row_at(index, self._filename), index)
        self._channel.send(row.to_message())
        self._session.rows_sent += 1
        logger.debug("sending - Row %d : %s", index + 1, row)
        if self._on_progress is not None:
            self._on_progress(self._session.progress)

    def resume(self) -> None:
        """Continue a paused transfer after the channel reopened."""
        if self._session.phase is Phase.SENDING:
            logger.info(
                "Resuming transfer at row %d/%d",
                self._session.rows_sent,
                self._session.rows_total,
            )
            self._session.error = None
            self.continue_sending()

    def handle_channel_error(self, error: Exception) -> None:
        if self._session.phase is Phase.SENDING:
            logger.error(
                f"Channel error during transfer at row {self._session.rows_sent}/"
                f"{self._session.rows_total}: {error}"
            )
            self._session.error = str(error)

    def handle_channel_close(self) -> None:
        if self._session.phase is Phase.SENDING:
            logger.warning(
                "Channel closed mid-transfer at row %d/%d; waiting for reconnect",
                self._session.rows_sent,
                self._session.rows_total,
            )

    def _finish(self) -> None:
        self._store.close_reader()
        self._session.phase = Phase.IDLE
        logger.info(
            f"Transfer finished: {self._session.rows_sent}/{self._session.rows_total} rows sent"
        )
        if self._on_complete is not None:
            self._on_complete()

    def _abort(self, error: StorageError) -> None:
        logger.error(f"Transfer aborted: {error}")
        self._store.close_reader()
        self._session.error = str(error)
        self._session.phase = Phase.READY_TO_SEND
