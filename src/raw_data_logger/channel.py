"""Point-to-point message channels to the companion.

A channel behaves like a peer socket: it has a ready state, counts the bytes
queued but not yet delivered (``buffered_amount``) and reports progress
through callback hooks:

- ``on_open()`` when the connection becomes usable,
- ``on_message(text)`` for text received from the peer,
- ``on_buffered_amount_decrease()`` after queued bytes were delivered,
- ``on_error(exc)`` when the peer reports a failure,
- ``on_close()`` when the connection goes away.

Payloads are plain text messages; there is no binary framing on the wire.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Callable, Deque, Optional

from bleak import BleakClient
from bleak.exc import BleakError

from .ble import COMPANION_NAME, NUS_RX_CHAR, NUS_SERVICE, resolve_address
from .errors import ChannelError

if TYPE_CHECKING:
    from .companion import CompanionSink

logger = logging.getLogger(__name__)


class ReadyState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class MessageChannel(ABC):
    """Abstract peer socket with buffered-amount flow control."""

    def __init__(self) -> None:
        self._ready_state = ReadyState.CONNECTING
        self._buffered_amount = 0
        self.on_open: Optional[Callable[[], None]] = None
        self.on_message: Optional[Callable[[str], None]] = None
        self.on_buffered_amount_decrease: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[Exception], None]] = None
        self.on_close: Optional[Callable[[], None]] = None

    @property
    def ready_state(self) -> ReadyState:
        return self._ready_state

    @property
    def is_open(self) -> bool:
        return self._ready_state is ReadyState.OPEN

    @property
    def buffered_amount(self) -> int:
        """Bytes accepted by ``send()`` but not yet delivered to the peer."""
        return self._buffered_amount

    @abstractmethod
    def send(self, message: str) -> None:
        """Queue one text message.

        Raises:
            ChannelError: If the channel is not open.
        """

    def _check_open(self) -> None:
        if not self.is_open:
            raise ChannelError(f"Channel is not open (state={self._ready_state.value})")

    def _fire_open(self) -> None:
        self._ready_state = ReadyState.OPEN
        logger.info("Channel open")
        if self.on_open is not None:
            self.on_open()

    def _fire_close(self) -> None:
        self._ready_state = ReadyState.CLOSED
        logger.info("Channel closed")
        if self.on_close is not None:
            self.on_close()

    def _fire_error(self, error: Exception) -> None:
        logger.error(f"Channel error: {error}")
        if self.on_error is not None:
            self.on_error(error)

    def _fire_decrease(self) -> None:
        if self.on_buffered_amount_decrease is not None:
            self.on_buffered_amount_decrease()


class LoopbackChannel(MessageChannel):
    """In-process channel delivering messages to a companion sink.

    With ``auto_drain`` enabled, a pump task on the running event loop
    delivers one queued message every ``drain_interval`` seconds and fires
    the buffered-amount-decrease hook after each delivery. With it disabled,
    delivery only happens when ``deliver_pending()`` is called, which makes
    the flow control fully deterministic.
    """

    def __init__(
        self,
        peer: Optional["CompanionSink"] = None,
        *,
        auto_drain: bool = True,
        drain_interval: float = 0.005,
    ):
        super().__init__()
        self._peer = peer
        self._auto_drain = auto_drain
        self._drain_interval = drain_interval
        self._pending: Deque[str] = deque()
        self._pump: Optional[asyncio.Task] = None
        self.sent_count = 0

    @property
    def peer(self) -> Optional["CompanionSink"]:
        return self._peer

    @property
    def pending(self) -> int:
        return len(self._pending)

    def open(self) -> None:
        if self.is_open:
            return
        if self._peer is not None:
            self._peer.on_open()
        self._fire_open()
        # messages queued before a close are still owed to the peer
        if self._pending:
            self._start_pump()

    def close(self) -> None:
        if self._ready_state is ReadyState.CLOSED:
            return
        if self._pump is not None:
            self._pump.cancel()
            self._pump = None
        self._fire_close()
        if self._peer is not None:
            self._peer.on_close()

    def send(self, message: str) -> None:
        self._check_open()
        self._pending.append(message)
        self._buffered_amount += len(message.encode("utf-8"))
        self.sent_count += 1
        self._start_pump()

    def deliver_pending(self, limit: Optional[int] = None) -> int:
        """Deliver up to ``limit`` queued messages (all when omitted).

        Fires the buffered-amount-decrease hook once after delivering, if
        anything was delivered.
        """
        delivered = 0
        while self._pending and (limit is None or delivered < limit):
            self._deliver_one()
            delivered += 1
        if delivered:
            self._fire_decrease()
        return delivered

    def fail(self, error: Exception) -> None:
        """Report a peer-side failure through both ends' error hooks."""
        if self._peer is not None:
            self._peer.on_error(error)
        self._fire_error(error)

    def _deliver_one(self) -> None:
        message = self._pending.popleft()
        self._buffered_amount -= len(message.encode("utf-8"))
        if self._peer is not None:
            self._peer.on_message(message)

    def _start_pump(self) -> None:
        if self._auto_drain and (self._pump is None or self._pump.done()):
            self._pump = asyncio.get_running_loop().create_task(
                self._run_pump(), name="loopback-pump"
            )

    async def _run_pump(self) -> None:
        try:
            while self._pending and self.is_open:
                await asyncio.sleep(self._drain_interval)
                if not self._pending:
                    break
                self._deliver_one()
                self._fire_decrease()
        except asyncio.CancelledError:
            pass


class BleChannel(MessageChannel):
    """Channel writing newline-terminated messages to a BLE UART peer.

    The companion side is expected to expose the Nordic UART Service; each
    message is written to its RX characteristic without response, split into
    chunks that fit the negotiated MTU. Queued bytes count towards
    ``buffered_amount`` until their write completes.
    """

    def __init__(
        self,
        address: Optional[str] = None,
        *,
        device_name: str = COMPANION_NAME,
        service_uuid: str = NUS_SERVICE,
        rx_char_uuid: str = NUS_RX_CHAR,
        scan_timeout: float = 10.0,
        delimiter: bytes = b"\n",
    ):
        super().__init__()
        self._address = address
        self._device_name = device_name
        self._service_uuid = service_uuid
        self._rx_char_uuid = rx_char_uuid
        self._scan_timeout = scan_timeout
        self._delimiter = delimiter
        self._client: Optional[BleakClient] = None
        self._queue: Optional[asyncio.Queue[bytes]] = None
        self._writer: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        """Resolve the companion address, connect and start the writer."""
        self._ready_state = ReadyState.CONNECTING
        try:
            address = await resolve_address(
                self._address,
                device_name=self._device_name,
                service_uuid=self._service_uuid,
                timeout=self._scan_timeout,
            )
        except ChannelError:
            self._ready_state = ReadyState.CLOSED
            raise

        def on_disconnect(_: BleakClient) -> None:
            logger.warning("BLE connection lost (callback)")
            self._stop_writer()
            self._fire_close()

        logger.info("BLE connection starting: %s", address)
        client = BleakClient(address, disconnected_callback=on_disconnect)
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            self._ready_state = ReadyState.CLOSED
            raise ChannelError(f"BLE connection failed: {e}") from e
        if not client.is_connected:
            self._ready_state = ReadyState.CLOSED
            raise ChannelError("BLE connection failed.")
        logger.info("BLE connection established: %s", address)

        self._client = client
        self._queue = asyncio.Queue()
        self._buffered_amount = 0
        self._writer = asyncio.get_running_loop().create_task(
            self._run_writer(), name="ble-writer"
        )
        self._fire_open()

    async def disconnect(self) -> None:
        self._stop_writer()
        if self._client is not None:
            try:
                await self._client.disconnect()
            except BleakError as e:
                logger.warning(f"Error during BLE disconnect: {e}")
            finally:
                self._client = None
        if self._ready_state is not ReadyState.CLOSED:
            self._fire_close()

    def send(self, message: str) -> None:
        self._check_open()
        assert self._queue is not None
        data = message.encode("utf-8") + self._delimiter
        self._queue.put_nowait(data)
        self._buffered_amount += len(data)

    def _chunk_size(self) -> int:
        # ATT header takes 3 bytes of the MTU
        mtu = getattr(self._client, "mtu_size", 23) or 23
        return max(20, mtu - 3)

    async def _run_writer(self) -> None:
        assert self._queue is not None
        try:
            while True:
                data = await self._queue.get()
                size = self._chunk_size()
                try:
                    for start in range(0, len(data), size):
                        assert self._client is not None
                        await self._client.write_gatt_char(
                            self._rx_char_uuid, data[start : start + size], response=False
                        )
                except (BleakError, OSError) as e:
                    # the message is dropped, its bytes no longer count as buffered
                    self._fire_error(ChannelError(f"BLE write failed: {e}"))
                finally:
                    self._buffered_amount -= len(data)
                self._fire_decrease()
        except asyncio.CancelledError:
            pass

    def _stop_writer(self) -> None:
        if self._writer is not None:
            self._writer.cancel()
            self._writer = None
