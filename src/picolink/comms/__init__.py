"""
PicoLink Communication Module
=============================

This module drives a MicroPython board's raw REPL over a serial link to
manage the board's filesystem: list, read, write, delete and rename
files, and run code.

Protocol Architecture
---------------------
The board's REPL has two modes:

- **Normal mode**: the interactive ``>>>`` prompt meant for people
- **Raw mode**: accepts a whole script terminated by Ctrl-D, without echo

Every operation enters raw mode, runs a generated script, and returns the
board to normal mode. Replies are not framed, so the driver recognises
the end of each reply by a *marker* line.

Module Structure
----------------
- **transport**: abstract byte stream with exclusive reader/writer handles
- **serial**: pyserial transport and port detection
- **session**: shared session state and the observer interface
- **sync**: marker waits over the received stream
- **mode**: raw/normal mode transitions
- **executor**: running scripts in raw mode
- **scripts**: the MicroPython scripts the driver sends
- **transfer**: framed uploads and streamed downloads
- **walker**: filesystem listing
- **guard**: one operation at a time
- **driver**: the ReplDriver facade

Quick Start
-----------
    from picolink.comms import ReplDriver, SerialTransport

    async with ReplDriver(SerialTransport("/dev/ttyACM0")) as driver:
        await driver.upload("/lib/util.py", source_text)
        data = (await driver.download("/data.bin", binary=True)).unwrap()

Error Handling
--------------
All communication errors inherit from `CommsError` and are defined in
`picolink.errors`. Failures of the scripts themselves (a file that could
not be deleted) come back as `ScriptResult` values, not exceptions.

Concurrency
-----------
Everything runs on one asyncio event loop. The classes are NOT
thread-safe; pyserial calls are moved to worker threads internally.
"""

# =============================================================================
# Public API Exports
# =============================================================================

from picolink.comms.driver import ReplDriver, is_text_file
from picolink.comms.executor import CommandExecutor, split_blocks
from picolink.comms.guard import (
    OperationResult,
    OperationStatus,
    SessionGuard,
)
from picolink.comms.mode import (
    CTRL_A,
    CTRL_B,
    CTRL_C,
    CTRL_D,
    ModeController,
)
from picolink.comms.scripts import (
    DOWNLOAD_TERMINATOR,
    ScriptResult,
    parse_script_result,
)
from picolink.comms.serial import (
    DEFAULT_BAUD_RATE,
    PortInfo,
    SerialTransport,
    close_serial_port,
    find_device_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)
from picolink.comms.session import DeviceObserver, ReplMode, SessionState
from picolink.comms.sync import StreamSynchronizer, find_marker
from picolink.comms.transfer import (
    MAX_UPLOAD_SIZE,
    PAD_BYTE,
    SEND_BLOCK_SIZE,
    FileTransfer,
    UploadFrame,
    build_upload_frame,
    normalize_text,
)
from picolink.comms.transport import ReadResult, Transport
from picolink.comms.walker import (
    DirectoryNode,
    FileNode,
    FilesystemWalker,
    parse_tree,
)

__all__ = [
    # Driver
    "ReplDriver",
    "is_text_file",
    # Transport
    "Transport",
    "ReadResult",
    "SerialTransport",
    "PortInfo",
    "DEFAULT_BAUD_RATE",
    "list_serial_ports",
    "find_device_port",
    "format_port_list",
    "open_serial_port",
    "close_serial_port",
    # Session
    "SessionState",
    "ReplMode",
    "DeviceObserver",
    # Protocol components
    "StreamSynchronizer",
    "find_marker",
    "ModeController",
    "CTRL_A",
    "CTRL_B",
    "CTRL_C",
    "CTRL_D",
    "CommandExecutor",
    "split_blocks",
    "FileTransfer",
    "UploadFrame",
    "build_upload_frame",
    "normalize_text",
    "SEND_BLOCK_SIZE",
    "PAD_BYTE",
    "MAX_UPLOAD_SIZE",
    "DOWNLOAD_TERMINATOR",
    "FilesystemWalker",
    "FileNode",
    "DirectoryNode",
    "parse_tree",
    "SessionGuard",
    "OperationResult",
    "OperationStatus",
    # Script results
    "ScriptResult",
    "parse_script_result",
]
