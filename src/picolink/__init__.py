"""
PicoLink - Filesystem Access for MicroPython Boards
===================================================

This package drives a MicroPython board (the Raspberry Pi Pico by
default) over its serial REPL to manage the files stored on it.

Main Components
---------------
- **comms**: the raw REPL protocol driver (ReplDriver)
- **config**: link settings, overridable from the environment
- **errors**: the exception hierarchy
- **cli**: the ``pclink`` command-line tool

Quick Start
-----------
    >>> import asyncio
    >>> from picolink import ReplDriver, SerialTransport, find_device_port
    >>> async def main():
    ...     async with ReplDriver(SerialTransport(find_device_port())) as driver:
    ...         print(list(driver.tree.paths()))
    >>> asyncio.run(main())

Or use the command-line tool:
    $ pclink ls
    $ pclink put main.py /main.py
    $ pclink get /main.py
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from picolink.comms import (
    DeviceObserver,
    DirectoryNode,
    FileNode,
    OperationResult,
    OperationStatus,
    ReplDriver,
    ScriptResult,
    SerialTransport,
    Transport,
    find_device_port,
    list_serial_ports,
)
from picolink.config import BusyPolicy, LinkConfig, get_default_config
from picolink.errors import (
    CommsError,
    ConnectionError,
    PicoLinkError,
    ProtocolError,
    SessionBusyError,
    SizeLimitError,
    TimeoutError,
    TransferError,
    TransportError,
    WaitCancelledError,
)

__all__ = [
    "__version__",
    # Driver
    "ReplDriver",
    "DeviceObserver",
    "Transport",
    "SerialTransport",
    "find_device_port",
    "list_serial_ports",
    # Results
    "OperationResult",
    "OperationStatus",
    "ScriptResult",
    "DirectoryNode",
    "FileNode",
    # Configuration
    "LinkConfig",
    "BusyPolicy",
    "get_default_config",
    # Errors
    "PicoLinkError",
    "CommsError",
    "ConnectionError",
    "TransportError",
    "ProtocolError",
    "TimeoutError",
    "WaitCancelledError",
    "SessionBusyError",
    "TransferError",
    "SizeLimitError",
]
