from __future__ import annotations

from pathlib import Path

import pytest

from raw_data_logger import build_parser
from raw_data_logger.ble import COMPANION_NAME
from raw_data_logger.config import LoggerConfig
from raw_data_logger.sensors import UserProfile


def test_defaults() -> None:
    config = LoggerConfig()

    assert config.tick_interval == 5.0
    assert config.watchdog_interval == 25.0
    assert config.watermark == 128
    assert not config.use_ble
    assert config.profile == UserProfile()


@pytest.mark.parametrize(
    "field", ["tick_interval", "watchdog_interval", "watermark"]
)
def test_rejects_non_positive_values(field: str) -> None:
    with pytest.raises(ValueError):
        LoggerConfig(**{field: 0})


def test_from_args() -> None:
    args = build_parser().parse_args(
        [
            "--data-dir",
            "logs",
            "--tick-interval",
            "1.5",
            "--gender",
            "male",
            "--resting-heart-rate",
            "58",
            "--companion-address",
            "AA:BB:CC:DD:EE:FF",
            "--companion-csv",
            "out.csv",
        ]
    )

    config = LoggerConfig.from_args(args)

    assert config.data_dir == Path("logs")
    assert config.tick_interval == 1.5
    assert config.profile == UserProfile(gender="male", resting_heart_rate=58.0)
    assert config.use_ble
    assert config.companion_address == "AA:BB:CC:DD:EE:FF"
    assert config.companion_name == COMPANION_NAME
    assert config.companion_csv == Path("out.csv")


def test_modes_are_exclusive() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--companion", "--read", "file.txt"])
