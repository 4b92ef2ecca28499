"""
PicoLink Error Hierarchy
========================

This module defines the exception hierarchy for the whole of picolink.
All exceptions inherit from PicoLinkError, allowing callers to catch all
driver-related errors with a single except clause if desired.

Exception Hierarchy
-------------------
PicoLinkError (base)
└── CommsError (serial communication)
    ├── ConnectionError - cannot open the port, or the port went away
    │   └── TransportError - a read or write on the transport failed
    ├── ProtocolError - the device sent output we cannot interpret
    ├── TimeoutError - an expected marker never arrived
    │   └── WaitCancelledError - the wait was cancelled by the caller
    ├── SessionBusyError - the session guard rejected an operation
    └── TransferError - error during file transfer
        └── SizeLimitError - payload exceeds the upload cap

Failures reported by the device itself (for example a failed ``os.remove``)
are not exceptions. They come back as data through ScriptResult, because a
device-side error leaves the link in a perfectly usable state.
"""

from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class PicoLinkError(Exception):
    """
    Base exception for all picolink errors.

    All exceptions in the package inherit from this class, allowing callers
    to catch all driver-related errors with a single except clause:

        try:
            await driver.upload("/main.py", source)
        except PicoLinkError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(PicoLinkError):
    """Base exception for serial communication errors."""
    pass


class ConnectionError(CommsError):
    """
    Cannot connect to the board, or the connection was lost.

    Raised when:
    - Serial port not found
    - Permission denied
    - Board unplugged while an operation was running
    """
    pass


class TransportError(ConnectionError):
    """
    A read or write on the underlying transport failed.

    Also raised when a reader or writer handle is acquired twice, or when
    I/O is attempted without holding the relevant handle.
    """
    pass


class ProtocolError(CommsError):
    """
    Device output could not be interpreted.

    Raised when, for example, the filesystem walk returns text that is
    not valid JSON.
    """
    pass


class TimeoutError(CommsError):
    """
    A marker the driver was waiting for never arrived.

    Note:
        This is a picolink-specific TimeoutError, distinct from the
        Python builtin TimeoutError. It inherits from CommsError
        for consistent error handling in the comms package.
    """

    def __init__(self, marker: Optional[str] = None, message: str = ""):
        self.marker = marker
        if not message:
            message = f"Timed out waiting for {marker!r}" if marker is not None \
                else "Timed out waiting for device"
        super().__init__(message)


class WaitCancelledError(TimeoutError):
    """A pending marker wait was cancelled explicitly."""

    def __init__(self, marker: Optional[str] = None):
        super().__init__(marker, f"Wait for {marker!r} was cancelled")


class SessionBusyError(CommsError):
    """
    Operation rejected because another one is already in flight.

    Only raised by OperationResult.unwrap(); the guard itself reports
    rejections as a result value.
    """
    pass


class TransferError(CommsError):
    """
    Error during file transfer.

    Raised when:
    - The payload cannot be uploaded
    - The download was aborted
    """
    pass


class SizeLimitError(TransferError):
    """
    Upload payload is larger than the device-side receiver accepts.

    Raised before any byte is sent to the board.
    """

    def __init__(self, size: int, limit: int, message: str = ""):
        self.size = size
        self.limit = limit
        if not message:
            message = f"File too large: {size} bytes (limit is below {limit} bytes)"
        super().__init__(message)
