"""Fixed-layout binary rows stored in the raw data log.

Every row is exactly 17 bytes, little-endian:

    offset  width  field
    0       4      timestamp (uint32, epoch milliseconds wrapped modulo 2**32)
    4       2      gender flag (header row) / accel.x x100 (sample rows)
    6       2      accel.y x100 (int16)
    8       2      accel.z x100 (int16)
    10      2      gyro.x x100 (int16)
    12      2      gyro.y x100 (int16)
    14      2      gyro.z x100 (int16)
    16      1      heart rate (uint8), resting heart rate in the header row

Row 0 of a log file is always a header row. Its byte 4 holds the gender flag
and byte 5 stays zero, so a header row and a sample row share the same
physical layout but must be decoded by row index.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Optional, Sequence, Tuple, Union

BYTES_PER_ROW = 17

# timestamp, ax, ay, az, gx, gy, gz, heart rate
ROW_STRUCT = struct.Struct("<I6hB")
TIMESTAMP_STRUCT = struct.Struct("<I")

GENDER_OFFSET = 4
HEART_RATE_OFFSET = 16

AXIS_SCALE = 100
AXIS_PLACES = Decimal("0.01")
# wide enough to quantize any finite float
_AXIS_CONTEXT = Context(prec=400)

Axes = Tuple[int, int, int]
Reading = Optional[float]


def _wrap_uint32(value: int) -> int:
    return value & 0xFFFFFFFF


def _wrap_int16(value: int) -> int:
    return ((value + 0x8000) & 0xFFFF) - 0x8000


def _wrap_uint8(value: int) -> int:
    return value & 0xFF


def _has_reading(value: Optional[float]) -> bool:
    # NaN and infinities count as no reading, like a zero
    return value is not None and math.isfinite(value) and value != 0


def scale_axis(value: Reading) -> int:
    """Convert one sensor axis reading into its stored int16 form.

    The reading is rounded to two decimals, ties going away from zero on the
    exact binary value, then multiplied by 100 and floored. Values outside
    +/-327.67 wrap around like a native int16 store; they are not clamped.

    Args:
        value: Axis reading, or None when the sensor has no sample yet.

    Returns:
        Scaled signed 16-bit integer, 0 for a missing or non-finite reading.
    """
    if not _has_reading(value):
        return 0
    rounded = Decimal(value).quantize(AXIS_PLACES, ROUND_HALF_UP, _AXIS_CONTEXT)
    scaled = float(rounded) * AXIS_SCALE
    if not math.isfinite(scaled):
        return 0
    return _wrap_int16(math.floor(scaled))


def descale_axis(value: int) -> float:
    return value / AXIS_SCALE


def scale_heart_rate(value: Optional[float]) -> int:
    """Heart rate as stored in the uint8 slot (0 when unavailable)."""
    if not _has_reading(value):
        return 0
    return _wrap_uint8(int(value))


def gender_flag(gender: Optional[str]) -> int:
    return 1 if gender == "male" else 0


@dataclass(frozen=True)
class HeaderRow:
    """Session metadata stored as row 0 of every log file."""

    timestamp: int
    gender: int
    resting_heart_rate: int

    def encode(self) -> bytes:
        buf = bytearray(BYTES_PER_ROW)
        TIMESTAMP_STRUCT.pack_into(buf, 0, _wrap_uint32(self.timestamp))
        buf[GENDER_OFFSET] = self.gender & 0xFF
        buf[HEART_RATE_OFFSET] = _wrap_uint8(self.resting_heart_rate)
        return bytes(buf)

    def to_message(self) -> str:
        return f"{self.timestamp},{self.gender},{self.resting_heart_rate}"

    @classmethod
    def from_profile(
        cls, timestamp: int, gender: Optional[str], resting_heart_rate: Optional[float]
    ) -> "HeaderRow":
        return cls(
            timestamp=_wrap_uint32(timestamp),
            gender=gender_flag(gender),
            resting_heart_rate=scale_heart_rate(resting_heart_rate),
        )


@dataclass(frozen=True)
class SampleRow:
    """One live sensor sample with axis values kept in their scaled form.

    Attributes:
        timestamp: Epoch milliseconds wrapped to 32 bits.
        heart_rate: Beats per minute, 0 when the monitor had no reading.
        accel: Accelerometer x, y, z multiplied by 100.
        gyro: Gyroscope x, y, z multiplied by 100.
    """

    timestamp: int
    heart_rate: int
    accel: Axes
    gyro: Axes

    def encode(self) -> bytes:
        return ROW_STRUCT.pack(
            _wrap_uint32(self.timestamp),
            *(_wrap_int16(v) for v in self.accel),
            *(_wrap_int16(v) for v in self.gyro),
            _wrap_uint8(self.heart_rate),
        )

    def to_message(self) -> str:
        ax, ay, az = self.accel
        gx, gy, gz = self.gyro
        return (
            f"{self.timestamp},{self.heart_rate},"
            f"{ax},{ay},{az},{gx},{gy},{gz}"
        )

    @property
    def accel_values(self) -> Tuple[float, float, float]:
        return tuple(descale_axis(v) for v in self.accel)  # type: ignore[return-value]

    @property
    def gyro_values(self) -> Tuple[float, float, float]:
        return tuple(descale_axis(v) for v in self.gyro)  # type: ignore[return-value]

    @classmethod
    def from_readings(
        cls,
        timestamp: int,
        heart_rate: Optional[float],
        accel: Sequence[Reading],
        gyro: Sequence[Reading],
    ) -> "SampleRow":
        """Build a row from raw sensor readings, any of which may be None."""
        return cls(
            timestamp=_wrap_uint32(timestamp),
            heart_rate=scale_heart_rate(heart_rate),
            accel=(scale_axis(accel[0]), scale_axis(accel[1]), scale_axis(accel[2])),
            gyro=(scale_axis(gyro[0]), scale_axis(gyro[1]), scale_axis(gyro[2])),
        )


Row = Union[HeaderRow, SampleRow]


def encode(row: Row) -> bytes:
    return row.encode()


def _check_length(data: bytes) -> None:
    if len(data) != BYTES_PER_ROW:
        raise ValueError(
            f"Row must be {BYTES_PER_ROW} bytes, got {len(data)}"
        )


def decode_header(data: bytes) -> HeaderRow:
    _check_length(data)
    (timestamp,) = TIMESTAMP_STRUCT.unpack_from(data, 0)
    return HeaderRow(
        timestamp=timestamp,
        gender=data[GENDER_OFFSET],
        resting_heart_rate=data[HEART_RATE_OFFSET],
    )


def decode_sample(data: bytes) -> SampleRow:
    _check_length(data)
    timestamp, ax, ay, az, gx, gy, gz, heart_rate = ROW_STRUCT.unpack(data)
    return SampleRow(
        timestamp=timestamp,
        heart_rate=heart_rate,
        accel=(ax, ay, az),
        gyro=(gx, gy, gz),
    )


def decode_row(data: bytes, index: int) -> Row:
    """Decode a row according to its position in the log file."""
    if index == 0:
        return decode_header(data)
    return decode_sample(data)


def parse_message(text: str, index: Optional[int] = None) -> Row:
    """Parse one wire message back into a row.

    Args:
        text: Comma-separated message as produced by ``to_message``.
        index: Position of the message in the transfer, 0 being the header.
            When omitted, a 3-field message is a header and anything else is
            parsed as a sample.

    Raises:
        ValueError: If the field count does not match the expected variant or
            a field is not an integer.
    """
    parts = [p.strip() for p in text.split(",")]
    if index is None:
        index = 0 if len(parts) == 3 else 1
    if index == 0:
        if len(parts) != 3:
            raise ValueError(f"Unexpected header fields count: {len(parts)} in '{text}'")
        timestamp, gender, resting = (int(p) for p in parts)
        return HeaderRow(timestamp=timestamp, gender=gender, resting_heart_rate=resting)

    if len(parts) != 8:
        raise ValueError(f"Unexpected sample fields count: {len(parts)} in '{text}'")
    values = [int(p) for p in parts]
    return SampleRow(
        timestamp=values[0],
        heart_rate=values[1],
        accel=(values[2], values[3], values[4]),
        gyro=(values[5], values[6], values[7]),
    )


def format_vector(values: Sequence[float]) -> str:
    return ", ".join(f"{value:.1f}" for value in values)


def describe_row(index: int, row: Row) -> str:
    """Human-readable one-line description of a decoded row."""
    if isinstance(row, HeaderRow):
        return (
            f"Row {index + 1} : Gender: {row.gender}, HR: {row.resting_heart_rate}, "
            f"Time: {row.timestamp}"
        )
    return (
        f"Row {index + 1} : Time: {row.timestamp}, HR: {row.heart_rate}, "
        f"Accel: {format_vector(row.accel_values)}, Gyro: {format_vector(row.gyro_values)}"
    )
