"""Session context shared by the controller and the transfer engine."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Phase(str, Enum):
    """Controller phase; the primary action cycles through them in order."""

    IDLE = "idle"
    RECORDING = "recording"
    READY_TO_SEND = "readyToSend"
    SENDING = "sending"


@dataclass
class Session:
    """Mutable state of one record/transfer cycle.

    Attributes:
        phase: Current controller phase.
        rows_sent: Rows pushed to the channel in the current transfer.
        rows_total: Rows in the log file being transferred.
        filename: Name of the log file the session works on.
        error: Message of the last storage or channel failure, if any.
    """

    phase: Phase = Phase.IDLE
    rows_sent: int = 0
    rows_total: int = 0
    filename: Optional[str] = None
    error: Optional[str] = None

    @property
    def progress(self) -> float:
        """Fraction of rows sent, 0.0 before any transfer."""
        if self.rows_total <= 0:
            return 0.0
        return min(1.0, self.rows_sent / self.rows_total)

    def reset(self) -> None:
        self.phase = Phase.IDLE
        self.rows_sent = 0
        self.rows_total = 0
        self.error = None
