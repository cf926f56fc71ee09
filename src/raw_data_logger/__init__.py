from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .ble import LOGGER_NAME
from .channel import LoopbackChannel
from .companion import CompanionSink
from .companion import run as run_companion
from .config import LoggerConfig
from .controller import create_controller
from .errors import StorageError
from .log_store import LogStore
from .recorder import DEFAULT_TICK_INTERVAL, DEFAULT_WATCHDOG_INTERVAL
from .row_codec import SampleRow, describe_row
from .session import Phase
from .transfer import DEFAULT_WATERMARK

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="raw-data-logger",
        description="Record heart rate and IMU samples to a binary log and transfer it to a companion.",
    )
    parser.add_argument(
        "--data-dir",
        default="data",
        help="Directory holding the daily log file (default: ./data)",
    )
    parser.add_argument(
        "--tick-interval",
        type=float,
        default=DEFAULT_TICK_INTERVAL,
        help="Seconds between recorded samples",
    )
    parser.add_argument(
        "--watchdog-interval",
        type=float,
        default=DEFAULT_WATCHDOG_INTERVAL,
        help="Seconds between forced closes of the log file",
    )
    parser.add_argument(
        "--watermark",
        type=int,
        default=DEFAULT_WATERMARK,
        help="Buffered bytes above which the transfer waits for the channel to drain",
    )
    parser.add_argument("--gender", default=None, help='Profile gender ("male" sets flag 1)')
    parser.add_argument(
        "--resting-heart-rate",
        type=float,
        default=None,
        help="Profile resting heart rate (bpm)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
            "NOTSET",
        ],
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (default: stderr only)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Control surface bind address (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8050,
        help="Control surface port (default: 8050)",
    )

    # companion link
    parser.add_argument(
        "--ble",
        action="store_true",
        help="Send to a BLE companion instead of the in-process loopback companion",
    )
    parser.add_argument(
        "--companion-address",
        default=None,
        help="BLE address of the companion (scans when omitted)",
    )
    parser.add_argument(
        "--companion-name",
        default=None,
        help="Device name to look for when scanning",
    )
    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=10.0,
        help="BLE scan timeout in seconds",
    )
    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=None,
        help="Companion mode: give up when nothing is received for this many seconds",
    )
    parser.add_argument(
        "--companion-csv",
        default=None,
        help="Write the samples the companion receives to this CSV file",
    )

    # modes (default: web control surface)
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--headless",
        type=int,
        metavar="N",
        default=None,
        help="Record N samples, send them over the loopback companion and print what it received",
    )
    mode.add_argument(
        "--companion",
        action="store_true",
        help="Run as the BLE companion and print received messages",
    )
    mode.add_argument(
        "--read",
        metavar="FILE",
        default=None,
        help="Decode a log file and print its rows",
    )
    return parser


def setup_logging(level_name: str, log_file: str | None = None) -> None:
    level = getattr(logging, str(level_name).upper(), logging.WARNING)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as e:
            print(f"Couldn't open log file {log_file}: {e}", file=sys.stderr)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


async def record_and_send(config: LoggerConfig, ticks: int) -> CompanionSink:
    """Record ``ticks`` samples, then transfer the log over a loopback channel.

    Returns:
        The companion sink holding every message it received.

    Raises:
        StorageError: If recording could not start or the transfer aborted.
    """
    sink = CompanionSink(csv_path=config.companion_csv)
    channel = LoopbackChannel(sink)
    recorded = asyncio.Event()
    samples = 0

    def on_sample(row: SampleRow) -> None:
        nonlocal samples
        samples += 1
        logger.info("Sample %d/%d : %s", samples, ticks, row.to_message())
        if samples >= ticks:
            recorded.set()

    controller = create_controller(config, channel, on_sample=on_sample)
    poll = min(0.05, config.tick_interval)

    controller.start()
    channel.open()
    try:
        controller.press()
        if controller.phase is not Phase.RECORDING:
            raise StorageError(controller.session.error or "recording did not start")
        if ticks > 0:
            await recorded.wait()

        controller.press()
        controller.press()
        while controller.phase is Phase.SENDING:
            await asyncio.sleep(poll)
        if controller.phase is not Phase.IDLE:
            raise StorageError(controller.session.error or "transfer aborted")

        while channel.pending:
            await asyncio.sleep(poll)
    finally:
        controller.shutdown()
        channel.close()
    return sink


def run_headless(config: LoggerConfig, ticks: int) -> int:
    try:
        sink = asyncio.run(record_and_send(config, ticks))
    except KeyboardInterrupt:
        return 130
    except StorageError as e:
        logger.error(f"❌ {e}")
        return 1
    for message in sink.messages:
        print(message, flush=True)
    logger.info(f"Companion received {sink.rows_received} rows")
    return 0


def read_log(path: Path) -> int:
    store = LogStore(path.parent, path.name)
    try:
        for index, row in enumerate(store.iter_rows()):
            print(describe_row(index, row), flush=True)
    except StorageError as e:
        logger.error(f"❌ {e}")
        return 1
    finally:
        store.close()
    return 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.log_level, args.log_file)

    if args.read:
        raise SystemExit(read_log(Path(args.read)))

    if args.companion:
        code = run_companion(
            address=args.companion_address,
            csv_path=Path(args.companion_csv) if args.companion_csv else None,
            device_name=args.companion_name or LOGGER_NAME,
            scan_timeout=args.scan_timeout,
            idle_timeout=args.idle_timeout,
        )
        raise SystemExit(code)

    try:
        config = LoggerConfig.from_args(args)
    except ValueError as e:
        parser.error(str(e))

    if args.headless is not None:
        if args.headless < 0:
            parser.error("--headless expects a non-negative sample count")
        raise SystemExit(run_headless(config, args.headless))

    # default: web control surface
    from .control import create_app

    logger.info("🔧 RawDataLogger control surface")
    logger.info(f"🔍 Open http://{config.host}:{config.port} in your browser")
    try:
        app = create_app(config)
        try:
            app.run()
        except KeyboardInterrupt:
            logger.info("🛑 Shutting down control surface...")
    except Exception as e:
        logger.error(f"❌ Failed to start control surface: {e}")
        raise SystemExit(1)
