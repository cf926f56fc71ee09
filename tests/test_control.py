from __future__ import annotations

import time
from pathlib import Path

import pytest

from raw_data_logger.channel import BleChannel, LoopbackChannel
from raw_data_logger.config import LoggerConfig
from raw_data_logger.control import ControlApp, create_app
from raw_data_logger.control.plots import create_samples_figure, relative_seconds
from raw_data_logger.row_codec import SampleRow
from raw_data_logger.session import Phase


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


def test_empty_figure_has_placeholder() -> None:
    fig = create_samples_figure([])

    assert len(fig.data) == 0
    texts = [annotation.text for annotation in fig.layout.annotations]
    assert texts.count("No data available") == 3


def test_figure_traces_use_descaled_values() -> None:
    samples = [
        SampleRow(1_000, 70, (50, 0, 100), (1050, 0, 0)),
        SampleRow(6_000, 0, (-50, 0, 100), (0, 0, 0)),
    ]

    fig = create_samples_figure(samples)

    assert len(fig.data) == 7
    assert list(fig.data[0].x) == [0.0, 5.0]
    assert list(fig.data[0].y) == [0.5, -0.5]
    assert list(fig.data[3].y) == [10.5, 0.0]
    assert list(fig.data[6].y) == [70, None]


def test_relative_seconds_across_wraparound() -> None:
    samples = [
        SampleRow(2**32 - 1_000, 70, (0, 0, 0), (0, 0, 0)),
        SampleRow(4_000, 70, (0, 0, 0), (0, 0, 0)),
    ]

    assert relative_seconds(samples) == [0.0, 5.0]


def test_loopback_app_wiring(tmp_path: Path) -> None:
    app = create_app(LoggerConfig(data_dir=tmp_path))

    assert isinstance(app, ControlApp)
    assert isinstance(app.channel, LoopbackChannel)
    assert app.sink is not None
    assert app.channel.peer is app.sink
    assert app.controller.engine.channel is app.channel


def test_ble_app_wiring(tmp_path: Path) -> None:
    app = ControlApp(LoggerConfig(data_dir=tmp_path, use_ble=True))

    assert isinstance(app.channel, BleChannel)
    assert app.sink is None


def test_call_requires_running_loop(tmp_path: Path) -> None:
    app = ControlApp(LoggerConfig(data_dir=tmp_path))

    with pytest.raises(RuntimeError):
        app.snapshot()


def test_full_cycle_through_loop_thread(tmp_path: Path) -> None:
    app = ControlApp(LoggerConfig(data_dir=tmp_path, tick_interval=100.0, resting_heart_rate=60))
    app.start()
    try:
        state = app.snapshot()
        assert state.phase is Phase.IDLE
        assert state.label == "Record"
        assert state.channel_state == "open"

        assert app.call(app.controller.press) is Phase.RECORDING
        app.call(app.controller.recorder.tick)
        app.call(app.controller.recorder.tick)
        state = app.snapshot()
        assert state.rows_written == 3
        assert state.last_sample is not None
        assert len(state.samples) == 2

        assert app.call(app.controller.press) is Phase.READY_TO_SEND
        app.call(app.controller.press)
        _wait_for(lambda: app.snapshot().phase is Phase.IDLE)
        _wait_for(lambda: app.sink.rows_received == 3)

        state = app.snapshot()
        assert state.rows_sent == state.rows_total == 3
        assert state.progress == 1.0

        rows = app.call(app.controller.read_local)
        assert len(rows) == 3
    finally:
        app.stop()

    assert not app.controller.recorder.watchdog_task.active
    assert app.channel.ready_state.value == "closed"
