from __future__ import annotations

import asyncio
import csv
from pathlib import Path

from raw_data_logger.channel import LoopbackChannel
from raw_data_logger.companion import CSV_COLUMNS, CompanionSink
from raw_data_logger.errors import ChannelError
from raw_data_logger.row_codec import HeaderRow, SampleRow

import pytest


def test_first_message_after_open_is_header() -> None:
    sink = CompanionSink()
    sink.on_open()
    sink.on_message("1000,1,60")
    sink.on_message("6000,72,50,-25,100,1050,-200,75")

    assert sink.header == HeaderRow(1000, 1, 60)
    assert sink.samples == [SampleRow(6000, 72, (50, -25, 100), (1050, -200, 75))]
    assert sink.rows_received == 2


def test_reopen_keeps_received_rows() -> None:
    sink = CompanionSink()
    sink.on_open()
    sink.on_message("1000,1,60")
    sink.on_message("6000,72,50,-25,100,1050,-200,75")
    sink.on_close()
    assert not sink.is_open

    sink.on_open()
    sink.on_message("11000,73,50,-25,100,1050,-200,75")

    assert sink.is_open
    assert sink.header == HeaderRow(1000, 1, 60)
    assert [sample.timestamp for sample in sink.samples] == [6000, 11000]
    assert sink.rows_received == 3


def test_header_starts_new_transfer() -> None:
    sink = CompanionSink()
    sink.on_open()
    sink.on_message("1000,1,60")
    sink.on_message("6000,72,50,-25,100,1050,-200,75")

    sink.on_message("21000,0,55")

    assert sink.header == HeaderRow(21000, 0, 55)
    assert sink.samples == []
    assert sink.messages == ["21000,0,55"]
    assert sink.rows_received == 1


def test_malformed_message_is_counted_but_not_stored() -> None:
    sink = CompanionSink()
    sink.on_open()
    sink.on_message("1000,1,60")
    sink.on_message("garbage")

    assert sink.rows_received == 2
    assert sink.messages == ["1000,1,60", "garbage"]
    assert sink.samples == []


def test_csv_export(tmp_path: Path) -> None:
    path = tmp_path / "out" / "received.csv"
    sink = CompanionSink(csv_path=path)
    sink.on_open()
    sink.on_message("1000,1,60")
    sink.on_message("6000,72,50,-25,100,1050,-200,75")
    sink.on_close()

    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))

    assert rows[0] == CSV_COLUMNS
    assert rows[1] == ["6000", "72", "0.5", "-0.25", "1.0", "10.5", "-2.0", "0.75"]
    assert len(rows) == 2


def test_csv_continues_after_reconnect(tmp_path: Path) -> None:
    path = tmp_path / "received.csv"
    sink = CompanionSink(csv_path=path)
    sink.on_open()
    sink.on_message("1000,1,60")
    sink.on_message("6000,72,50,-25,100,1050,-200,75")
    sink.on_close()
    sink.on_open()
    sink.on_message("11000,73,50,-25,100,1050,-200,75")
    sink.on_close()

    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))

    assert rows[0] == CSV_COLUMNS
    assert [row[0] for row in rows[1:]] == ["6000", "11000"]


def test_echo_prints_messages(capsys) -> None:
    sink = CompanionSink(echo=True, keep_messages=False)
    sink.on_open()
    sink.on_message("1000,1,60")

    assert capsys.readouterr().out == "1000,1,60\n"
    assert sink.messages == []


def test_errors_are_recorded() -> None:
    sink = CompanionSink()
    error = RuntimeError("link lost")
    sink.on_error(error)

    assert sink.errors == [error]


def test_loopback_pump_delivers_in_order() -> None:
    sink = CompanionSink()
    channel = LoopbackChannel(sink, drain_interval=0.001)
    decreases = []
    channel.on_buffered_amount_decrease = lambda: decreases.append(channel.buffered_amount)

    async def scenario() -> None:
        channel.open()
        channel.send("1000,1,60")
        channel.send("6000,72,50,-25,100,1050,-200,75")
        assert channel.buffered_amount == 9 + 31
        while channel.pending:
            await asyncio.sleep(0.001)
        channel.close()

    asyncio.run(scenario())

    assert sink.messages == ["1000,1,60", "6000,72,50,-25,100,1050,-200,75"]
    assert decreases == [31, 0]
    assert channel.sent_count == 2


def test_send_requires_open_channel() -> None:
    channel = LoopbackChannel(auto_drain=False)

    with pytest.raises(ChannelError):
        channel.send("1000,1,60")

    channel.open()
    channel.close()
    with pytest.raises(ChannelError):
        channel.send("1000,1,60")
