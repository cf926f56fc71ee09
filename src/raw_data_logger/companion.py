"""Companion-side receiver for transferred log rows.

The companion is a passive sink: it logs and counts every text message the
logger sends, parses it back into a row and can append the parsed samples to
a CSV file. It does not acknowledge anything. A header message starts a new
transfer; a reconnect in the middle of a transfer keeps what was received.

``receive()`` connects to a logger advertising the Nordic UART Service and
feeds its notifications into a sink, for setups where the logger is the BLE
peripheral.
"""

from __future__ import annotations

import asyncio
import csv
import logging
from pathlib import Path
from typing import List, Optional, TextIO

from bleak import BleakClient

from .ble import (
    LOGGER_NAME,
    NUS_SERVICE,
    NUS_TX_CHAR,
    create_notification_handler,
    resolve_address,
)
from .row_codec import HeaderRow, Row, SampleRow, parse_message

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["timestamp", "heartRate", "accelX", "accelY", "accelZ", "gyroX", "gyroY", "gyroZ"]


class CompanionSink:
    """Receives transfer messages with open/message/error/close hooks."""

    def __init__(
        self,
        csv_path: Optional[Path] = None,
        keep_messages: bool = True,
        echo: bool = False,
    ):
        self._csv_path = csv_path
        self._csv_file: Optional[TextIO] = None
        self._csv_writer = None
        self._keep_messages = keep_messages
        self._echo = echo
        self.messages: List[str] = []
        self.header: Optional[HeaderRow] = None
        self.samples: List[SampleRow] = []
        self.rows_received = 0
        self.errors: List[Exception] = []
        self.is_open = False

    def on_open(self) -> None:
        logger.debug("companion: socket open")
        self.is_open = True

    def on_message(self, text: str) -> None:
        try:
            row: Optional[Row] = parse_message(text)
        except ValueError as e:
            logger.warning("Message parsing failed: %s (error=%s)", text, e)
            row = None
        if isinstance(row, HeaderRow):
            self._start_transfer()

        self.rows_received += 1
        logger.debug(f"Rcv {self.rows_received}: {text!r}")
        if self._keep_messages:
            self.messages.append(text)
        if self._echo:
            print(text, flush=True)
        if row is not None:
            self._store(row)

    def _start_transfer(self) -> None:
        self.rows_received = 0
        self.header = None
        self.samples = []
        self.messages = []

    def on_error(self, error: Exception) -> None:
        logger.error(f"Companion: connection error: {error}")
        self.errors.append(error)

    def on_close(self) -> None:
        logger.debug("companion: socket closed")
        self.is_open = False
        self.close_csv()

    def _store(self, row: Row) -> None:
        if isinstance(row, HeaderRow):
            self.header = row
            logger.info(
                f"Session header: time={row.timestamp}, gender={row.gender}, "
                f"resting HR={row.resting_heart_rate}"
            )
            return
        self.samples.append(row)
        if self._csv_path is not None:
            self._write_csv(row)

    def _write_csv(self, row: SampleRow) -> None:
        if self._csv_writer is None:
            assert self._csv_path is not None
            self._csv_path.parent.mkdir(parents=True, exist_ok=True)
            new_file = not self._csv_path.exists()
            self._csv_file = open(self._csv_path, "a", newline="", encoding="utf-8")
            self._csv_writer = csv.writer(self._csv_file)
            if new_file:
                self._csv_writer.writerow(CSV_COLUMNS)
            logger.info(f"Opened companion CSV file: {self._csv_path}")
        ax, ay, az = row.accel_values
        gx, gy, gz = row.gyro_values
        self._csv_writer.writerow([row.timestamp, row.heart_rate, ax, ay, az, gx, gy, gz])
        assert self._csv_file is not None
        self._csv_file.flush()

    def close_csv(self) -> None:
        if self._csv_file is not None:
            self._csv_file.close()
            self._csv_file = None
            self._csv_writer = None


async def _consume_lines(
    queue: asyncio.Queue[Optional[str]],
    sink: CompanionSink,
    idle_timeout: Optional[float],
    disconnected: asyncio.Event,
    client: BleakClient,
) -> None:
    while True:
        if idle_timeout is not None:
            try:
                line = await asyncio.wait_for(queue.get(), timeout=idle_timeout)
            except asyncio.TimeoutError:
                logger.warning("Receive timeout (%.1fs)", idle_timeout)
                if disconnected.is_set() or not client.is_connected:
                    raise RuntimeError("BLE connection lost.")
                continue
        else:
            line = await queue.get()

        if line is None:
            raise RuntimeError("BLE connection lost.")
        sink.on_message(line)


async def receive(
    sink: CompanionSink,
    address: Optional[str] = None,
    *,
    device_name: str = LOGGER_NAME,
    service_uuid: str = NUS_SERVICE,
    tx_char_uuid: str = NUS_TX_CHAR,
    scan_timeout: float = 10.0,
    idle_timeout: Optional[float] = None,
) -> None:
    """Subscribe to a logger's UART notifications and feed them to ``sink``.

    Runs until the connection drops or the task is cancelled.

    Raises:
        ChannelError: If the logger cannot be found.
        RuntimeError: If the connection is lost.
    """
    address = await resolve_address(
        address, device_name=device_name, service_uuid=service_uuid, timeout=scan_timeout
    )

    buffer = bytearray()
    disconnected = asyncio.Event()

    def on_disconnect(_: BleakClient) -> None:
        logger.warning("BLE connection lost (callback)")
        disconnected.set()
        queue.put_nowait(None)

    queue: asyncio.Queue[Optional[str]] = asyncio.Queue()

    logger.info("BLE connection starting: %s", address)
    async with BleakClient(address, disconnected_callback=on_disconnect) as client:
        if not client.is_connected:
            raise RuntimeError("BLE connection failed.")
        logger.info("BLE connection established: %s", address)

        handle = create_notification_handler(queue, buffer, disconnected)
        await client.start_notify(tx_char_uuid, lambda _, data: handle(data))
        sink.on_open()

        try:
            await _consume_lines(queue, sink, idle_timeout, disconnected, client)
        except RuntimeError as e:
            sink.on_error(e)
            raise
        finally:
            sink.on_close()
            if client.is_connected:
                logger.info("Stopping notification subscription")
                await client.stop_notify(tx_char_uuid)


def run(
    address: Optional[str] = None,
    csv_path: Optional[Path] = None,
    device_name: str = LOGGER_NAME,
    scan_timeout: float = 10.0,
    idle_timeout: Optional[float] = None,
) -> int:
    """Blocking companion entry point for the CLI.

    Returns:
        0 on normal completion, 1 on error, 130 on keyboard interrupt.
    """
    sink = CompanionSink(csv_path=csv_path, keep_messages=False, echo=True)
    try:
        asyncio.run(
            receive(
                sink,
                address,
                device_name=device_name,
                scan_timeout=scan_timeout,
                idle_timeout=idle_timeout,
            )
        )
        return 0
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1
    finally:
        logger.info(f"Companion received {sink.rows_received} rows")
