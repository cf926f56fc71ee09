"""Runtime configuration assembled from command-line options."""

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .ble import COMPANION_NAME
from .recorder import DEFAULT_TICK_INTERVAL, DEFAULT_WATCHDOG_INTERVAL
from .sensors import UserProfile
from .transfer import DEFAULT_WATERMARK


@dataclass
class LoggerConfig:
    """Settings for one logger process.

    Attributes:
        data_dir: Directory holding the daily log files.
        tick_interval: Seconds between recorded samples.
        watchdog_interval: Seconds between forced closes of the log file.
        watermark: Buffered bytes above which the transfer waits for a drain.
        gender: Profile gender ("male" or anything else).
        resting_heart_rate: Profile resting heart rate, if known.
        port: Control surface HTTP port.
        host: Control surface bind address.
        use_ble: Send to a BLE companion instead of the in-process loopback.
        companion_address: BLE address of the companion (scan when omitted).
        companion_name: Advertised name used when scanning for the companion.
        scan_timeout: BLE scan timeout in seconds.
        companion_csv: Where the loopback companion writes received samples.
    """

    data_dir: Path = Path("data")
    tick_interval: float = DEFAULT_TICK_INTERVAL
    watchdog_interval: float = DEFAULT_WATCHDOG_INTERVAL
    watermark: int = DEFAULT_WATERMARK
    gender: Optional[str] = None
    resting_heart_rate: Optional[float] = None
    port: int = 8050
    host: str = "127.0.0.1"
    use_ble: bool = False
    companion_address: Optional[str] = None
    companion_name: str = COMPANION_NAME
    scan_timeout: float = 10.0
    companion_csv: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.tick_interval <= 0:
            raise ValueError(f"tick_interval must be positive, got {self.tick_interval}")
        if self.watchdog_interval <= 0:
            raise ValueError(
                f"watchdog_interval must be positive, got {self.watchdog_interval}"
            )
        if self.watermark <= 0:
            raise ValueError(f"watermark must be positive, got {self.watermark}")

    @property
    def profile(self) -> UserProfile:
        return UserProfile(gender=self.gender, resting_heart_rate=self.resting_heart_rate)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "LoggerConfig":
        return cls(
            data_dir=Path(args.data_dir),
            tick_interval=args.tick_interval,
            watchdog_interval=args.watchdog_interval,
            watermark=args.watermark,
            gender=args.gender,
            resting_heart_rate=args.resting_heart_rate,
            port=args.port,
            host=args.host,
            use_ble=args.ble or args.companion_address is not None,
            companion_address=args.companion_address,
            companion_name=args.companion_name or COMPANION_NAME,
            scan_timeout=args.scan_timeout,
            companion_csv=Path(args.companion_csv) if args.companion_csv else None,
        )
