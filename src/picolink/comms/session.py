"""
Session State and Observer
==========================

Shared state for one raw REPL session, plus the observer interface the
driver uses to report output and lifecycle events to its host.

A single SessionState instance is created per ReplDriver and passed by
reference to each component. Nothing here is module-global, so several
drivers can run side by side in one process.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from picolink.comms.walker import DirectoryNode


class ReplMode(Enum):
    """Which REPL the board is believed to be in."""
    UNKNOWN = "unknown"
    RAW_PENDING = "raw_pending"   # Ctrl-A sent, soft reset not yet confirmed
    RAW = "raw"
    NORMAL = "normal"


@dataclass
class SessionState:
    """
    Mutable state shared by the protocol components.

    Attributes:
        mode: Current REPL mode
        busy: True while a guarded operation is in flight
        disconnected: True until connect() succeeds and after the link drops
        pending_marker: Marker being waited for, None when not waiting
        accumulated_text: Text received since the marker was armed
        raw_capture: Raw bytes captured during a binary download, or None
        force_echo: Echo device output to the observer even while waiting
    """

    mode: ReplMode = ReplMode.UNKNOWN
    busy: bool = False
    disconnected: bool = True
    pending_marker: Optional[str] = None
    accumulated_text: str = ""
    raw_capture: Optional[bytearray] = None
    force_echo: bool = False


class DeviceObserver:
    """
    Receives output and events from a ReplDriver.

    Every method is a no-op; subclass and override the ones you need.

    Example:
        class Console(DeviceObserver):
            def on_data(self, text):
                sys.stdout.write(text)
    """

    def on_data(self, text: str) -> None:
        """Device output that is not being consumed by a pending wait."""

    def on_connect(self) -> None:
        """The transport opened."""

    def on_disconnect(self) -> None:
        """The transport closed, by request or because it was lost."""

    def on_filesystem(self, tree: "DirectoryNode") -> None:
        """A fresh filesystem tree was read from the board."""

    def on_progress(self, percent: int, label: Optional[str] = None) -> None:
        """Upload progress, 0 to 100."""
