"""
Dash application driving the logger's record / send cycle.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

import dash  # type: ignore
from dash import dcc, html, Input, Output

from ..channel import BleChannel, LoopbackChannel, MessageChannel
from ..companion import CompanionSink
from ..config import LoggerConfig
from ..controller import SessionController, create_controller
from ..errors import ChannelError, StorageError
from ..row_codec import SampleRow, describe_row, format_vector
from ..sensors import SensorSuite
from ..session import Phase
from .plots import create_samples_figure

logger = logging.getLogger(__name__)

PANEL_STYLE = {
    "display": "inline-block",
    "verticalAlign": "top",
    "padding": "10px",
    "border": "1px solid #ddd",
    "borderRadius": "5px",
    "margin": "5px",
}

PHASE_COLORS = {
    Phase.IDLE: "#28a745",
    Phase.RECORDING: "#dc3545",
    Phase.READY_TO_SEND: "#007bff",
    Phase.SENDING: "#6c757d",
}


@dataclass
class ControlState:
    """Snapshot of controller state taken on the loop thread for rendering."""

    phase: Phase
    label: str
    progress: float
    rows_sent: int
    rows_total: int
    rows_written: int
    channel_state: str
    error: Optional[str]
    last_sample: Optional[SampleRow]
    samples: List[SampleRow] = field(default_factory=list)


class ControlApp:
    """Web control surface for one logger.

    The controller, its timers and the channel all live on a dedicated asyncio
    event loop running in a background thread. Dash callbacks run on the web
    server's threads and marshal every controller call onto that loop with
    ``call()``, so session state is only ever touched from one thread.

    Attributes:
        config: Logger settings the app was built from.
        channel: Channel the transfer engine sends on.
        sink: In-process companion receiving loopback transfers, if any.
        controller: Session controller owning recorder and transfer engine.
        app: The Dash application.
    """

    def __init__(
        self,
        config: LoggerConfig,
        sensors: Optional[SensorSuite] = None,
        update_interval: int = 1000,
        plot_samples: int = 120,
    ):
        self.config = config
        self.update_interval = update_interval
        self.plot_samples = plot_samples
        self.sink: Optional[CompanionSink] = None
        self.channel = self._create_channel()
        self.controller: SessionController = create_controller(
            config, self.channel, sensors
        )

        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ready = threading.Event()

        self.app = dash.Dash(__name__)
        self._setup_layout()
        self._setup_callbacks()

    def _create_channel(self) -> MessageChannel:
        if self.config.use_ble:
            return BleChannel(
                self.config.companion_address,
                device_name=self.config.companion_name,
                scan_timeout=self.config.scan_timeout,
            )
        self.sink = CompanionSink(csv_path=self.config.companion_csv, keep_messages=False)
        return LoopbackChannel(self.sink)

    def _setup_layout(self) -> None:
        self.app.layout = html.Div(
            [
                html.H1("RawDataLogger", style={"textAlign": "center"}),
                html.Div(
                    [
                        html.Div(
                            [
                                html.H3("Session"),
                                html.Button(
                                    "Record",
                                    id="primary-btn",
                                    style={
                                        "marginRight": "10px",
                                        "padding": "8px 16px",
                                        "color": "white",
                                        "border": "none",
                                        "borderRadius": "4px",
                                        "cursor": "pointer",
                                    },
                                ),
                                html.Button(
                                    "Read file",
                                    id="read-btn",
                                    style={
                                        "padding": "8px 16px",
                                        "border": "1px solid #6c757d",
                                        "borderRadius": "4px",
                                        "cursor": "pointer",
                                    },
                                ),
                                html.Div(id="session-status", style={"marginTop": "10px"}),
                                html.Div(id="session-error", style={"color": "#dc3545"}),
                            ],
                            style={**PANEL_STYLE, "width": "35%"},
                        ),
                        html.Div(
                            [
                                html.H3("Sensors"),
                                html.Div(id="hr-label", children="HR : -- / --"),
                                html.Div(id="accel-label", children="Accel: --"),
                                html.Div(id="gyro-label", children="Gyro: --"),
                            ],
                            style={**PANEL_STYLE, "width": "25%"},
                        ),
                        html.Div(
                            [
                                html.H3("Transfer"),
                                html.Div(id="channel-status", children="Initializing..."),
                                html.Progress(
                                    id="transfer-progress",
                                    value="0",
                                    max="100",
                                    style={"width": "100%"},
                                ),
                                html.Div(id="transfer-info", children=""),
                            ],
                            style={**PANEL_STYLE, "width": "30%"},
                        ),
                    ],
                    style={"margin": "20px", "display": "flex", "gap": "10px"},
                ),
                dcc.Graph(
                    id="samples-plot",
                    config={"displayModeBar": True},
                    style={"height": "650px"},
                ),
                html.Div(
                    [
                        html.H3("Log file"),
                        html.Pre(
                            id="read-output",
                            children="",
                            style={"maxHeight": "300px", "overflowY": "auto"},
                        ),
                    ],
                    style={**PANEL_STYLE, "width": "95%"},
                ),
                dcc.Interval(
                    id="interval-component",
                    interval=self.update_interval,
                    n_intervals=0,
                ),
                html.Div(id="action-store", style={"display": "none"}),
            ]
        )

    def _setup_callbacks(self) -> None:
        @self.app.callback(  # type: ignore
            [
                Output("samples-plot", "figure"),
                Output("primary-btn", "children"),
                Output("primary-btn", "disabled"),
                Output("primary-btn", "style"),
                Output("read-btn", "disabled"),
                Output("session-status", "children"),
                Output("session-error", "children"),
                Output("hr-label", "children"),
                Output("accel-label", "children"),
                Output("gyro-label", "children"),
                Output("channel-status", "children"),
                Output("transfer-progress", "value"),
                Output("transfer-info", "children"),
            ],
            [
                Input("interval-component", "n_intervals"),
                Input("action-store", "children"),
            ],
        )
        def update_view(n_intervals: int, action: Optional[str]) -> Tuple[Any, ...]:
            try:
                state = self.snapshot()
            except RuntimeError as e:
                logger.debug(f"Snapshot unavailable: {e}")
                return (dash.no_update,) * 13

            sending = state.phase is Phase.SENDING
            primary_style = {
                "marginRight": "10px",
                "padding": "8px 16px",
                "backgroundColor": PHASE_COLORS[state.phase],
                "color": "white",
                "border": "none",
                "borderRadius": "4px",
                "cursor": "not-allowed" if sending else "pointer",
                "opacity": "0.6" if sending else "1.0",
            }

            sample = state.last_sample
            resting = self.config.resting_heart_rate
            resting_text = "--" if resting is None else f"{resting:g}"
            if sample is None:
                hr_text = f"HR : -- / {resting_text}"
                accel_text = "Accel: --"
                gyro_text = "Gyro: --"
            else:
                hr_text = f"HR : {sample.heart_rate} / {resting_text}"
                accel_text = f"Accel: {format_vector(sample.accel_values)}"
                gyro_text = f"Gyro: {format_vector(sample.gyro_values)}"

            transfer_info = f"{state.rows_sent}/{state.rows_total} rows sent"
            if self.sink is not None:
                transfer_info += f", companion received {self.sink.rows_received}"

            return (
                create_samples_figure(state.samples),
                state.label,
                sending,
                primary_style,
                state.phase is not Phase.IDLE,
                f"Phase: {state.phase.value}, {state.rows_written} rows recorded",
                f"❌ {state.error}" if state.error else "",
                hr_text,
                accel_text,
                gyro_text,
                f"Channel: {state.channel_state}",
                f"{state.progress * 100:.2f}",
                transfer_info,
            )

        @self.app.callback(  # type: ignore
            Output("action-store", "children"),
            [Input("primary-btn", "n_clicks")],
            prevent_initial_call=True,
        )
        def press_primary(n_clicks: int):  # type: ignore
            if not n_clicks:
                return dash.no_update
            try:
                phase = self.call(self.controller.press)
            except RuntimeError as e:
                logger.error(f"❌ Control action failed: {e}")
                return "error"
            return f"{phase.value}:{n_clicks}"

        @self.app.callback(  # type: ignore
            Output("read-output", "children"),
            [Input("read-btn", "n_clicks")],
            prevent_initial_call=True,
        )
        def read_file(n_clicks: int):  # type: ignore
            if not n_clicks:
                return dash.no_update
            try:
                rows = self.call(self.controller.read_local)
            except (RuntimeError, StorageError) as e:
                logger.warning(f"Couldn't read log file: {e}")
                return f"❌ {e}"
            if not rows:
                return "Log file is empty"
            return "\n".join(describe_row(index, row) for index, row in enumerate(rows))

    def call(self, fn: Callable[..., Any], *args: Any, timeout: float = 5.0) -> Any:
        """Run ``fn(*args)`` on the loop thread and return its result.

        Raises:
            RuntimeError: If the loop thread is not running.
        """
        loop = self._loop
        if loop is None or not loop.is_running():
            raise RuntimeError("Logger loop is not running")

        async def invoke() -> Any:
            return fn(*args)

        return asyncio.run_coroutine_threadsafe(invoke(), loop).result(timeout)

    def snapshot(self) -> ControlState:
        return self.call(self._take_snapshot)

    def _take_snapshot(self) -> ControlState:
        controller = self.controller
        session = controller.session
        recorder = controller.recorder
        return ControlState(
            phase=session.phase,
            label=controller.label,
            progress=session.progress,
            rows_sent=session.rows_sent,
            rows_total=session.rows_total,
            rows_written=recorder.rows_written,
            channel_state=self.channel.ready_state.value,
            error=session.error,
            last_sample=recorder.last_sample,
            samples=recorder.recent_samples(self.plot_samples),
        )

    async def _open_channel(self) -> None:
        if isinstance(self.channel, BleChannel):
            try:
                await self.channel.connect()
            except ChannelError as e:
                logger.error(f"❌ Companion unavailable: {e}")
                self.controller.session.error = str(e)
        elif isinstance(self.channel, LoopbackChannel):
            self.channel.open()

    async def _close_channel(self) -> None:
        if isinstance(self.channel, BleChannel):
            await self.channel.disconnect()
        elif isinstance(self.channel, LoopbackChannel):
            self.channel.close()

    async def _startup(self) -> None:
        self.controller.start()
        await self._open_channel()

    async def _teardown(self) -> None:
        self.controller.shutdown()
        await self._close_channel()
        if self.sink is not None:
            self.sink.close_csv()

    def _loop_worker(self) -> None:
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._startup())
            self._loop.call_soon(self._ready.set)
            self._loop.run_forever()
        except Exception as e:
            logger.exception(f"💥 Logger loop fatal error: {e}")
        finally:
            try:
                self._loop.run_until_complete(self._teardown())
            finally:
                self._loop.close()
                self._ready.set()
            logger.info("🏁 Logger loop finished")

    def start(self, timeout: float = 30.0) -> None:
        """Start the loop thread and wait until the controller is ready."""
        if self._thread is None or not self._thread.is_alive():
            self._ready.clear()
            self._thread = threading.Thread(
                target=self._loop_worker, name="logger-loop", daemon=True
            )
            self._thread.start()
            if not self._ready.wait(timeout):
                logger.warning("⚠️ Logger loop did not become ready in time")

    def stop(self) -> None:
        logger.info("🛑 Stopping logger loop...")
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(loop.stop)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning("⚠️ Logger loop thread did not stop gracefully")

    def run(self, debug: bool = False) -> None:
        """Start the loop thread and serve the web UI until interrupted."""
        self.start()
        try:
            self.app.run(host=self.config.host, port=self.config.port, debug=debug)
        finally:
            self.stop()


def create_app(config: LoggerConfig, **kwargs: Any) -> ControlApp:
    """Factory function to create a control app.

    Args:
        config: Logger settings.
        **kwargs: Additional arguments for ControlApp.

    Returns:
        ControlApp instance
    """
    return ControlApp(config=config, **kwargs)
