"""
Command Executor
================

Runs generated Python source on the board through the raw REPL.

Raw Execution Exchange
----------------------
    host  -> CR Ctrl-C Ctrl-C, CR Ctrl-A    (ModeController.enter_raw)
    host  -> script bytes, in blocks of at most 255 bytes
    host  -> Ctrl-D
    board <- "OK" stdout Ctrl-D stderr Ctrl-D ">"

The board's receive buffer is small, so scripts are never written in one
piece. Exceptions raised by the script on the board are not turned into
Python exceptions here: they come back as text like any other output.
"""

import logging
from typing import Final, Optional

from picolink.comms.mode import CTRL_D, ModeController
from picolink.comms.sync import RAW_PROMPT, StreamSynchronizer, WriteFunc
from picolink.config import LinkConfig

# Configure module logger
logger = logging.getLogger(__name__)

# End of transmission: executes the buffered script
EXECUTE: Final[bytes] = CTRL_D


def split_blocks(data: bytes, block_size: int) -> list[bytes]:
    """
    Split data into consecutive blocks of at most block_size bytes.

    Example:
        >>> [len(b) for b in split_blocks(b"x" * 600, 255)]
        [255, 255, 90]
    """
    if block_size <= 0:
        raise ValueError(f"Block size must be positive, got {block_size}")
    return [data[i:i + block_size] for i in range(0, len(data), block_size)]


class CommandExecutor:
    """Submits scripts in raw mode and collects their output."""

    def __init__(
        self,
        mode: ModeController,
        sync: StreamSynchronizer,
        write: WriteFunc,
        config: LinkConfig,
    ):
        self.mode = mode
        self.sync = sync
        self.config = config
        self._write = write

    async def run_raw(
        self,
        script: str,
        wait_for_completion: bool = False,
        omit_lines: int = 0,
        terminator: str = RAW_PROMPT,
        raw_capture: bool = False,
        timeout: Optional[float] = None,
        echo: bool = False,
    ) -> Optional[list[str]]:
        """
        Execute a script on the board.

        Args:
            script: Complete Python source to run.
            wait_for_completion: Wait for terminator and return the output.
            omit_lines: Lines after the terminator line to include in the result.
            terminator: Marker that signals the end of the output.
            raw_capture: Also capture the raw bytes (see StreamSynchronizer).
            timeout: Seconds to wait for the terminator, None for the default.
            echo: Forward output to the observer while it is being collected.

        Returns:
            Collected output lines when waiting, an empty list when not
            waiting, or None if the session disconnected.
        """
        if not await self.mode.enter_raw():
            return None

        payload = script.encode("utf-8")
        blocks = split_blocks(payload, self.config.send_block_size)
        logger.debug("Sending script: %d bytes in %d blocks", len(payload), len(blocks))
        for block in blocks:
            await self._write(block)

        if not wait_for_completion:
            await self._write(EXECUTE)
            return []

        # Arm before Ctrl-D: the reply can arrive on the very next read
        self.sync.start_wait_for(terminator)
        if raw_capture:
            self.sync.start_raw_capture()
        self.sync.state.force_echo = echo
        try:
            await self._write(EXECUTE)
            if terminator == RAW_PROMPT:
                await self.sync.wait_for_prompt()
            return await self.sync.halt_until_read(omit_lines, timeout=timeout)
        finally:
            self.sync.state.force_echo = False
