"""BLE plumbing shared by the logger channel and the companion receiver.

Messages travel over the Nordic UART Service (NUS) as newline-terminated
UTF-8 text. This module holds the UUIDs, device discovery and the line
reassembly used on the receiving side, where notifications arrive as
arbitrary-sized fragments.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from .errors import ChannelError

# Nordic UART Service (NUS) UUID constants
NUS_SERVICE = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
NUS_TX_CHAR = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"  # Notify (peripheral to central)
NUS_RX_CHAR = "6e400002-b5a3-f393-e0a9-e50e24dcca9e"  # Write (central to peripheral)

COMPANION_NAME = "RawDataLogger Companion"
LOGGER_NAME = "RawDataLogger"

# Receive buffer cap when no delimiter shows up
MAX_LINE_BUFFER = 64 * 1024

logger = logging.getLogger(__name__)


def peer_filter(
    device_name: str, service_uuid: str = NUS_SERVICE
) -> Callable[[BLEDevice, AdvertisementData], bool]:
    """Scan filter accepting the named peer or anything advertising ``service_uuid``."""
    wanted = service_uuid.lower()

    def accept(device: BLEDevice, adv: AdvertisementData) -> bool:
        if device.name == device_name:
            return True
        return any(uuid.lower() == wanted for uuid in adv.service_uuids or [])

    return accept


async def resolve_address(
    address: Optional[str],
    *,
    device_name: str,
    service_uuid: str = NUS_SERVICE,
    timeout: float = 10.0,
) -> str:
    """Return ``address`` as given, or scan for the peer and return its address.

    Raises:
        ChannelError: If the scanner fails or no matching peer advertises
            within ``timeout`` seconds.
    """
    if address is not None:
        return address

    logger.info("Scanning for '%s' (timeout=%.1fs)", device_name, timeout)
    try:
        device = await BleakScanner.find_device_by_filter(
            peer_filter(device_name, service_uuid), timeout=timeout
        )
    except BleakError as e:
        raise ChannelError(f"BLE scan failed, check that Bluetooth is enabled: {e}") from e
    if device is None:
        raise ChannelError(
            f"Device '{device_name}' not found. Check that it is powered on and advertising."
        )
    logger.info("Connection target address: %s (name=%s)", device.address, device.name)
    return device.address


def parse_line_from_buffer(buffer: bytearray) -> Optional[str]:
    """Extract one complete line from the receive buffer.

    LF, CRLF, CR and NUL all terminate a line; the earliest one wins. The
    buffer is modified in place. Lines that are empty or only whitespace and
    commas are dropped as noise.

    Returns:
        The decoded line, or None when no complete line is buffered yet.
    """
    candidates = []
    for token in (b"\n", b"\r", b"\x00"):
        idx = buffer.find(token)
        if idx != -1:
            candidates.append((idx, token))

    if not candidates:
        if len(buffer) > MAX_LINE_BUFFER:
            drop = len(buffer) - MAX_LINE_BUFFER
            logger.warning("Buffer overflow protection: trimming %d bytes", drop)
            del buffer[:drop]
        return None

    idx, token = min(candidates, key=lambda t: t[0])
    consume = 1
    if token == b"\r" and buffer[idx + 1 : idx + 2] == b"\n":
        consume = 2

    line = bytes(buffer[:idx])
    del buffer[: idx + consume]

    try:
        text = line.decode("utf-8", errors="strict")
    except UnicodeDecodeError:
        logger.error("UTF-8 decode failed: %r", line)
        return None

    if text.strip() == "" or text.replace(",", "").strip() == "":
        logger.debug("Skipping noise line: %r", text)
        return None

    return text


def create_notification_handler(
    queue: asyncio.Queue[Optional[str]],
    buffer: bytearray,
    disconnected: asyncio.Event,
) -> Callable[[bytearray], None]:
    """Build a notification callback that feeds complete lines into ``queue``.

    A ``None`` is queued after a disconnect so the consumer wakes up.
    """

    def handle(data: bytearray) -> None:
        logger.debug("Notification received: %d bytes", len(data))
        buffer.extend(data)

        while True:
            text = parse_line_from_buffer(buffer)
            if text is None:
                break
            queue.put_nowait(text)

        if disconnected.is_set():
            queue.put_nowait(None)

    return handle
