"""Append-only log file holding fixed-size binary rows.

One file is created per calendar day, named ``RawDataLogger-YYYYMMDD.txt``.
Despite the extension the content is binary: a concatenation of 17-byte rows
as laid out in :mod:`raw_data_logger.row_codec`.

The store keeps at most one append handle and one read handle open. The
append handle survives between writes and is only released by
``flush_and_close()``; the read handle is reused across ``read_row_at()``
calls until ``close_reader()``.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from .errors import LogNotFoundError, StorageError
from .row_codec import BYTES_PER_ROW, Row, decode_row

logger = logging.getLogger(__name__)

FILENAME_PREFIX = "RawDataLogger"


def log_filename(day: Optional[date] = None) -> str:
    """Log file name for the given day (today when omitted)."""
    day = day or date.today()
    return f"{FILENAME_PREFIX}-{day.strftime('%Y%m%d')}.txt"


@dataclass(frozen=True)
class LogStat:
    """Size information for one log file."""

    size: int
    rows: int


class LogStore:
    """File-backed row store bound to one log file name."""

    def __init__(self, directory: Path, filename: Optional[str] = None):
        self._directory = Path(directory)
        self._filename = filename or log_filename()
        self._append_handle: Optional[BinaryIO] = None
        self._read_handle: Optional[BinaryIO] = None
        self._read_name: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def filename(self) -> str:
        return self._filename

    @property
    def directory(self) -> Path:
        return self._directory

    def path(self, name: Optional[str] = None) -> Path:
        return self._directory / (name or self._filename)

    @property
    def is_open_for_append(self) -> bool:
        with self._lock:
            return self._append_handle is not None

    def delete_if_exists(self, name: Optional[str] = None) -> None:
        """Remove the log file; a missing file is not an error."""
        path = self.path(name)
        try:
            path.unlink()
            logger.info(f"Deleted log file: {path}")
        except FileNotFoundError:
            logger.debug("No log file to delete: %s", path)
        except OSError as e:
            logger.error(f"Couldn't delete {path}: {e}")
            raise StorageError(f"Couldn't delete {path}: {e}") from e

    def append_row(self, data: bytes) -> None:
        """Append one encoded row, opening the file on first use."""
        if len(data) != BYTES_PER_ROW:
            raise ValueError(f"Row must be {BYTES_PER_ROW} bytes, got {len(data)}")

        with self._lock:
            try:
                if self._append_handle is None:
                    self._directory.mkdir(parents=True, exist_ok=True)
                    self._append_handle = open(self.path(), "ab")
                    logger.debug("Opened log file for append: %s", self.path())
                self._append_handle.write(data)
                self._append_handle.flush()
            except OSError as e:
                logger.error(f"Error appending row to {self.path()}: {e}")
                raise StorageError(f"Error appending row to {self.path()}: {e}") from e

    def flush_and_close(self) -> None:
        """Close the append handle; safe to call when nothing is open."""
        with self._lock:
            if self._append_handle is None:
                return
            try:
                self._append_handle.close()
                logger.debug("Closed log file: %s", self.path())
            except OSError as e:
                raise StorageError(f"Error closing {self.path()}: {e}") from e
            finally:
                self._append_handle = None

    def stat(self, name: Optional[str] = None) -> LogStat:
        """Size and row count of a log file.

        Raises:
            LogNotFoundError: If the file does not exist.
            StorageError: For any other failure to inspect the file.
        """
        path = self.path(name)
        try:
            size = path.stat().st_size
        except FileNotFoundError as e:
            raise LogNotFoundError(f"Log file not found: {path}") from e
        except OSError as e:
            raise StorageError(f"Couldn't stat {path}: {e}") from e

        rows, partial = divmod(size, BYTES_PER_ROW)
        if partial:
            logger.warning(
                "Log file %s ends with a partial row (%d trailing bytes ignored)",
                path,
                partial,
            )
        return LogStat(size=size, rows=rows)

    def read_row_at(self, index: int, name: Optional[str] = None) -> bytes:
        """Read the row at ``index`` by absolute offset ``index * 17``."""
        if index < 0:
            raise ValueError(f"Row index must be non-negative, got {index}")

        name = name or self._filename
        with self._lock:
            try:
                if self._read_handle is None or self._read_name != name:
                    self._close_reader_locked()
                    self._read_handle = open(self.path(name), "rb")
                    self._read_name = name
                    logger.debug("Opened log file for read: %s", self.path(name))
                self._read_handle.seek(index * BYTES_PER_ROW)
                data = self._read_handle.read(BYTES_PER_ROW)
            except FileNotFoundError as e:
                raise LogNotFoundError(f"Log file not found: {self.path(name)}") from e
            except OSError as e:
                raise StorageError(f"Error reading {self.path(name)}: {e}") from e

        if len(data) != BYTES_PER_ROW:
            raise StorageError(
                f"Short read at row {index} of {self.path(name)}: {len(data)} bytes"
            )
        return data

    def close_reader(self) -> None:
        with self._lock:
            self._close_reader_locked()

    def _close_reader_locked(self) -> None:
        if self._read_handle is None:
            return
        try:
            self._read_handle.close()
        except OSError as e:
            raise StorageError(f"Error closing reader: {e}") from e
        finally:
            self._read_handle = None
            self._read_name = None

    def iter_rows(self, name: Optional[str] = None) -> Iterator[Row]:
        """Decode every complete row of a log file, header first."""
        stats = self.stat(name)
        logger.debug(
            f"File size: {stats.size} bytes = {stats.rows} rows"
        )
        try:
            for index in range(stats.rows):
                yield decode_row(self.read_row_at(index, name), index)
        finally:
            self.close_reader()

    def close(self) -> None:
        """Release both handles."""
        self.flush_and_close()
        self.close_reader()
