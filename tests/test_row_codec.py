from __future__ import annotations

import math

import pytest

from raw_data_logger.row_codec import (
    BYTES_PER_ROW,
    HeaderRow,
    SampleRow,
    decode_header,
    decode_row,
    decode_sample,
    describe_row,
    encode,
    parse_message,
    scale_axis,
    scale_heart_rate,
)


def test_header_round_trip() -> None:
    header = HeaderRow(timestamp=1_700_000_000, gender=1, resting_heart_rate=58)
    data = encode(header)

    assert len(data) == BYTES_PER_ROW
    assert decode_header(data) == header


def test_header_layout_keeps_unused_bytes_zero() -> None:
    data = HeaderRow(timestamp=0x01020304, gender=1, resting_heart_rate=60).encode()

    assert data[:4] == bytes([0x04, 0x03, 0x02, 0x01])
    assert data[4] == 1
    assert data[16] == 60
    assert data[5:16] == bytes(11)


def test_sample_round_trip() -> None:
    sample = SampleRow(
        timestamp=123_456,
        heart_rate=80,
        accel=(50, -25, 100),
        gyro=(1050, -200, 75),
    )

    assert decode_sample(encode(sample)) == sample


def test_decode_row_uses_index_to_pick_variant() -> None:
    data = HeaderRow(timestamp=5, gender=0, resting_heart_rate=70).encode()

    assert isinstance(decode_row(data, 0), HeaderRow)
    sample = decode_row(data, 1)
    assert isinstance(sample, SampleRow)
    assert sample.heart_rate == 70


@pytest.mark.parametrize(
    "value, expected",
    [
        (0.5, 50),
        (-0.75, -75),
        (1.25, 125),
        (9.5, 950),
        (None, 0),
        (0.0, 0),
    ],
)
def test_scale_axis(value, expected) -> None:
    assert scale_axis(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        # exact binary ties round away from zero
        (0.125, 13),
        (0.625, 63),
        (-0.125, -13),
        # 1.005 is stored just below the tie
        (1.005, 100),
        # floor applies to the float product, 0.29 * 100 == 28.999999999999996
        (0.29, 28),
    ],
)
def test_scale_axis_rounding(value, expected) -> None:
    assert scale_axis(value) == expected


@pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, 1e308])
def test_scale_axis_non_finite_is_zero(value) -> None:
    assert scale_axis(value) == 0


def test_non_finite_readings_encode_as_zero() -> None:
    row = SampleRow.from_readings(1, math.nan, (math.nan, 0.5, math.inf), (-math.inf, 1.0, 0.0))

    assert row.heart_rate == 0
    assert row.accel == (0, 50, 0)
    assert row.gyro == (0, 100, 0)
    assert len(row.encode()) == BYTES_PER_ROW


def test_scale_axis_wraps_instead_of_clamping() -> None:
    assert scale_axis(400.0) == 40000 - 65536
    assert scale_axis(-400.0) == -40000 + 65536


def test_heart_rate_scaling() -> None:
    assert scale_heart_rate(None) == 0
    assert scale_heart_rate(72.9) == 72
    assert scale_heart_rate(300) == 300 - 256


def test_missing_readings_encode_as_zero() -> None:
    row = SampleRow.from_readings(1_000, None, (None, None, None), (None, None, None))

    assert row.accel == (0, 0, 0)
    assert row.gyro == (0, 0, 0)
    assert row.heart_rate == 0
    assert decode_sample(row.encode()).accel_values == (0.0, 0.0, 0.0)


def test_from_profile_sets_gender_flag() -> None:
    assert HeaderRow.from_profile(1, "male", 60).gender == 1
    assert HeaderRow.from_profile(1, "female", 60).gender == 0
    assert HeaderRow.from_profile(1, None, None) == HeaderRow(1, 0, 0)


def test_timestamp_wraps_to_uint32() -> None:
    row = SampleRow.from_readings(2**32 + 7, 70, (0.5, 0.5, 0.5), (1.0, 1.0, 1.0))

    assert row.timestamp == 7
    assert decode_sample(row.encode()).timestamp == 7


def test_descaled_values() -> None:
    row = SampleRow.from_readings(1, 70, (0.5, -0.25, 1.0), (10.5, -2.0, 0.75))

    assert row.accel_values == (0.5, -0.25, 1.0)
    assert row.gyro_values == (10.5, -2.0, 0.75)


@pytest.mark.parametrize("size", [0, 16, 18])
def test_decode_rejects_wrong_length(size: int) -> None:
    with pytest.raises(ValueError):
        decode_sample(bytes(size))
    with pytest.raises(ValueError):
        decode_header(bytes(size))


def test_message_formats() -> None:
    header = HeaderRow(timestamp=1000, gender=1, resting_heart_rate=60)
    sample = SampleRow(timestamp=6000, heart_rate=72, accel=(50, -25, 100), gyro=(1050, -200, 75))

    assert header.to_message() == "1000,1,60"
    assert sample.to_message() == "6000,72,50,-25,100,1050,-200,75"


def test_parse_message_by_index() -> None:
    assert parse_message("1000,1,60", 0) == HeaderRow(1000, 1, 60)
    assert parse_message("6000,72,50,-25,100,1050,-200,75", 1) == SampleRow(
        6000, 72, (50, -25, 100), (1050, -200, 75)
    )


def test_parse_message_without_index_uses_field_count() -> None:
    assert parse_message("1000,1,60") == HeaderRow(1000, 1, 60)
    assert parse_message("6000,72,50,-25,100,1050,-200,75") == SampleRow(
        6000, 72, (50, -25, 100), (1050, -200, 75)
    )
    with pytest.raises(ValueError):
        parse_message("6000,72,50,-25")


@pytest.mark.parametrize(
    "text, index",
    [
        ("1000,1", 0),
        ("1000,1,60", 1),
        ("6000,72,a,-25,100,1050,-200,75", 1),
    ],
)
def test_parse_message_rejects_malformed(text: str, index: int) -> None:
    with pytest.raises(ValueError):
        parse_message(text, index)


def test_describe_row() -> None:
    assert describe_row(0, HeaderRow(1000, 1, 60)) == "Row 1 : Gender: 1, HR: 60, Time: 1000"
    line = describe_row(1, SampleRow(6000, 72, (50, -30, 100), (1050, -200, 70)))
    assert line == (
        "Row 2 : Time: 6000, HR: 72, Accel: 0.5, -0.3, 1.0, Gyro: 10.5, -2.0, 0.7"
    )
