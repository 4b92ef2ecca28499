"""
Mode Controller
===============

Moves the board between the normal (friendly) REPL and the raw REPL.

Control Characters
------------------
    Ctrl-A  0x01  enter raw REPL
    Ctrl-B  0x02  leave raw REPL (back to the normal REPL)
    Ctrl-C  0x03  keyboard interrupt
    Ctrl-D  0x04  soft reset (normal REPL) / end of command (raw REPL)

Transitions
-----------
enter_raw:     CR Ctrl-C Ctrl-C   interrupt whatever is running
               CR Ctrl-A          wait for the raw banner (omit 2)
               soft_reset()
soft_reset:    Ctrl-D             wait for the soft reboot banner (omit 4)
enter_normal:  enter_raw()
               CR Ctrl-B          wait for the board's boot banner

Going through a soft reset on every entry gives each operation a clean
interpreter, at the cost of losing user state on the board.
"""

import logging
from typing import Final

from picolink.comms.session import ReplMode, SessionState
from picolink.comms.sync import StreamSynchronizer, WriteFunc
from picolink.config import LinkConfig

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Control Bytes
# =============================================================================

CTRL_A: Final[bytes] = b"\x01"   # Raw REPL
CTRL_B: Final[bytes] = b"\x02"   # Normal REPL
CTRL_C: Final[bytes] = b"\x03"   # Interrupt
CTRL_D: Final[bytes] = b"\x04"   # Soft reset / end of transmission

INTERRUPT_SEQUENCE: Final[bytes] = b"\r" + CTRL_C + CTRL_C
RAW_MODE_SEQUENCE: Final[bytes] = b"\r" + CTRL_A
NORMAL_MODE_SEQUENCE: Final[bytes] = b"\r" + CTRL_B

# Lines after each banner that belong to the transition, not to user output
RAW_BANNER_OMIT: Final[int] = 2
SOFT_REBOOT_OMIT: Final[int] = 4

# Greeting lines ("MicroPython v1.x ...", "Type \"help()\" ...", ">>> ") hidden
# when returning to the normal REPL after a utility command
NORMAL_GREETING_OMIT: Final[int] = 3


class ModeController:
    """
    Drives raw/normal REPL transitions.

    Each transition returns True once the board confirmed it, or False
    if the wait was abandoned because the session disconnected.
    """

    def __init__(
        self,
        state: SessionState,
        sync: StreamSynchronizer,
        write: WriteFunc,
        config: LinkConfig,
    ):
        self.state = state
        self.sync = sync
        self.config = config
        self._write = write

    async def enter_raw(self) -> bool:
        """Interrupt the board and switch it to the raw REPL."""
        logger.debug("Entering raw REPL")
        self.sync.start_wait_for(self.config.raw_banner)
        await self._write(INTERRUPT_SEQUENCE)
        await self._write(RAW_MODE_SEQUENCE)
        self.state.mode = ReplMode.RAW_PENDING

        if await self.sync.halt_until_read(RAW_BANNER_OMIT) is None:
            return False
        return await self.soft_reset()

    async def soft_reset(self) -> bool:
        """Soft-reset the interpreter; in raw mode the board stays raw."""
        self.sync.start_wait_for(self.config.soft_reboot_banner)
        await self._write(CTRL_D)

        if await self.sync.halt_until_read(SOFT_REBOOT_OMIT) is None:
            return False
        self.state.mode = ReplMode.RAW
        logger.debug("Raw REPL ready")
        return True

    async def enter_normal(self, omit: int = 0) -> bool:
        """
        Return the board to the normal REPL.

        Args:
            omit: Lines after the boot banner to swallow rather than show.
        """
        if not await self.enter_raw():
            return False

        logger.debug("Leaving raw REPL")
        self.sync.start_wait_for(self.config.boot_banner)
        await self._write(NORMAL_MODE_SEQUENCE)

        if await self.sync.halt_until_read(omit) is None:
            return False
        self.state.mode = ReplMode.NORMAL
        return True
