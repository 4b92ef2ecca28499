"""
Stream Synchronizer
===================

Turns the unframed byte stream coming back from the board into
request/response exchanges. The board never frames its replies, so the
driver arms a *marker* (a line it expects to see) and then waits until
that marker shows up in the text received since it was armed.

While a marker is pending, incoming text is accumulated instead of being
shown to the user. Once the marker is found, the lines before it
(plus ``omit`` lines) are handed to the caller and the remaining lines
are forwarded to the observer as ordinary output.

Line Matching
-------------
Received text is split on CRLF. A line matches when any of these hold:

1. the line equals the marker
2. the marker is empty
3. the marker is a substring of the line
4. the line is the raw prompt ">", alone or after Ctrl-D separators

Rule 4 fires whatever marker is armed: it means the board is back at the
raw prompt, for example after a script raised before printing the marker.

Matching depends only on the accumulated text, never on how the bytes
were chunked by the transport. A UTF-8 sequence split across two chunks
decodes the same as if it had arrived whole.

Waiting
-------
Waits are event-driven: every fed chunk wakes the waiter, which re-scans
the accumulated text. A wait ends in one of four ways:

- marker found: the preceding lines are returned
- session disconnected: None is returned
- timeout expired: picolink TimeoutError is raised
- cancel() called: WaitCancelledError is raised
"""

import asyncio
import codecs
import logging
from typing import Awaitable, Callable, Final, Optional

from picolink.comms.session import DeviceObserver, SessionState
from picolink.config import LinkConfig
from picolink.errors import TimeoutError, WaitCancelledError

# Configure module logger
logger = logging.getLogger(__name__)

# Line separator used by the MicroPython REPL
LINE_SEPARATOR: Final[str] = "\r\n"

# Prompt printed by the raw REPL when it is ready for the next command
RAW_PROMPT: Final[str] = ">"

# Token printed by the raw REPL after it accepts a command
OK_TOKEN: Final[str] = "OK"

# Separates stdout, stderr and the prompt in a raw REPL reply
EOT: Final[str] = "\x04"

WriteFunc = Callable[[bytes], Awaitable[None]]


def find_marker(lines: list[str], marker: str) -> Optional[int]:
    """
    Return the index of the first line matching marker, or None.

    The last entry of lines is the line still being received. A bare
    raw prompt there may yet grow into ordinary output, so it only counts
    once it follows a Ctrl-D separator or the line is complete.

    Example:
        >>> find_marker(["OK", "hello", ">"], "hello")
        1
        >>> find_marker(["abc"], "")
        0
        >>> find_marker(["OK", ">"], "###DONE READING FILE###") is None
        True
    """
    last = len(lines) - 1
    for index, line in enumerate(lines):
        if line == marker or not marker or marker in line:
            return index
        if line.lstrip(EOT) == RAW_PROMPT and (index < last or line != RAW_PROMPT):
            return index
    return None


class StreamSynchronizer:
    """
    Accumulates device output and resolves marker waits.

    The read loop calls feed() for every chunk. Protocol code calls
    start_wait_for() before sending the bytes that trigger a reply, then
    awaits halt_until_read().

    Args:
        state: Shared session state.
        observer: Receives output that is not consumed by a wait.
        write: Coroutine function used for the prompt watchdog nudge.
        config: Link configuration (timeouts and watchdog limits).
    """

    def __init__(
        self,
        state: SessionState,
        observer: DeviceObserver,
        write: WriteFunc,
        config: LinkConfig,
    ):
        self.state = state
        self.observer = observer
        self.config = config
        self._write = write
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._data_event = asyncio.Event()
        self._cancelled = False

    # =========================================================================
    # Input side
    # =========================================================================

    def feed(self, chunk: bytes) -> None:
        """Process one chunk received from the transport."""
        state = self.state
        text = self._decoder.decode(chunk)

        if state.raw_capture is not None:
            state.raw_capture.extend(chunk)

        if state.pending_marker is None:
            if text:
                self.observer.on_data(text)
        else:
            if state.force_echo and text:
                self.observer.on_data(text)
            state.accumulated_text += text

        self._data_event.set()

    def reset(self) -> None:
        """Forget partial input, for example after a reconnect."""
        self._decoder.reset()
        self.state.pending_marker = None
        self.state.accumulated_text = ""
        self.state.raw_capture = None
        self._cancelled = False

    # =========================================================================
    # Arming
    # =========================================================================

    def start_wait_for(self, marker: str) -> None:
        """Arm marker and clear the accumulation buffer."""
        self.state.pending_marker = marker
        self.state.accumulated_text = ""
        self._cancelled = False
        logger.debug("Waiting for marker %r", marker)

    def start_raw_capture(self) -> None:
        self.state.raw_capture = bytearray()

    def end_raw_capture(self) -> bytes:
        """Stop capturing and return the bytes captured so far."""
        captured = bytes(self.state.raw_capture or b"")
        self.state.raw_capture = None
        return captured

    # =========================================================================
    # Waiting
    # =========================================================================

    async def halt_until_read(
        self,
        omit: int = 0,
        timeout: Optional[float] = None,
    ) -> Optional[list[str]]:
        """
        Wait until the pending marker appears in the accumulated text.

        Args:
            omit: Extra lines after the marker line to return to the caller
                  instead of forwarding to the observer.
            timeout: Seconds to wait, None to use the configured default.

        Returns:
            The lines before the marker line plus ``omit`` more, or None if
            the session disconnected while waiting.

        Raises:
            TimeoutError: If the marker did not arrive in time.
            WaitCancelledError: If cancel() was called during the wait.
        """
        state = self.state
        if timeout is None:
            timeout = self.config.marker_timeout
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while True:
            marker = state.pending_marker

            if state.disconnected:
                logger.debug("Wait for %r abandoned: disconnected", marker)
                state.pending_marker = None
                return None

            if self._cancelled:
                self._cancelled = False
                state.pending_marker = None
                raise WaitCancelledError(marker)

            if marker is None:
                return []

            lines = state.accumulated_text.split(LINE_SEPARATOR)
            index = find_marker(lines, marker)
            if index is not None:
                return self._resolve(lines, index + omit)

            self._data_event.clear()
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                state.pending_marker = None
                raise TimeoutError(marker)
            try:
                await asyncio.wait_for(self._data_event.wait(), remaining)
            except asyncio.TimeoutError:
                state.pending_marker = None
                logger.warning("Timed out waiting for %r", marker)
                raise TimeoutError(marker) from None

    def _resolve(self, lines: list[str], cut: int) -> list[str]:
        self.state.pending_marker = None
        self.state.accumulated_text = ""

        trailing = LINE_SEPARATOR.join(lines[cut:])
        if trailing:
            self.observer.on_data(trailing)

        return lines[:cut]

    async def wait_for_prompt(self) -> None:
        """
        Watchdog for the raw prompt after a command is sent.

        Polls for a line starting with "OK", or a bare ">", for a bounded
        number of retries. If neither shows up, sends an empty write to
        nudge the transport and logs a warning. Never raises for a stall.
        """
        state = self.state
        for _ in range(self.config.prompt_retry_limit):
            if state.disconnected:
                return
            lines = state.accumulated_text.split(LINE_SEPARATOR)
            if any(line.startswith(OK_TOKEN) or line == RAW_PROMPT for line in lines):
                return
            await asyncio.sleep(self.config.prompt_poll_interval)

        logger.warning(
            "No raw prompt after %d polls, nudging the device",
            self.config.prompt_retry_limit,
        )
        await self._write(b"")

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel(self) -> None:
        """Cancel the in-flight wait, if any."""
        if self.state.pending_marker is None:
            return
        self._cancelled = True
        self._data_event.set()

    def abort(self) -> None:
        """Wake any waiter after the session was marked disconnected."""
        self._data_event.set()
