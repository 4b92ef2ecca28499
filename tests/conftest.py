"""
PicoLink Test Configuration
===========================

Shared fixtures for the picolink test suite.

It provides:
- FakeBoard: an in-memory Transport that behaves like a MicroPython board
  at the raw REPL level (modes, soft reset, script execution)
- RecordingObserver: a DeviceObserver that records every event
- A connected ReplDriver wired to a FakeBoard

FakeBoard does not run the scripts it receives. It recognises the
scripts picolink generates and applies their effect to an in-memory
filesystem, replying with the bytes a real board would send.
"""

import ast
import asyncio
import json
import re
from typing import Optional

import pytest
import pytest_asyncio

from picolink.comms.driver import ReplDriver
from picolink.comms.scripts import parent_directory
from picolink.comms.session import DeviceObserver
from picolink.comms.transport import ReadResult, Transport
from picolink.config import LinkConfig


# ═══════════════════════════════════════════════════════════════════════════════
# BOARD REPLIES
# ═══════════════════════════════════════════════════════════════════════════════

RAW_BANNER = "raw REPL; CTRL-B to exit\r\n>"
SOFT_REBOOT = "OK\r\nMPY: soft reboot\r\n" + RAW_BANNER
GREETING = (
    "\r\nMicroPython v1.22.2 on 2024-02-22; Raspberry Pi Pico with RP2040\r\n"
    "Type \"help()\" for more information.\r\n>>> "
)
NORMAL_PROMPT = "\r\n>>> "
END_OF_REPLY = "\x04\x04>"
ENOENT_TRACEBACK = (
    "Traceback (most recent call last):\r\n"
    "  File \"<stdin>\", line 2, in <module>\r\n"
    "OSError: [Errno 2] ENOENT\r\n"
)


def open_traceback(errno: int, name: str) -> str:
    return (
        "Traceback (most recent call last):\r\n"
        "  File \"<stdin>\", line 11, in <module>\r\n"
        f"OSError: [Errno {errno}] {name}\r\n"
    )


UPLOAD_BLOCK = 255


def _literal(pattern: str, source: str):
    """Evaluate the Python literal captured by pattern in a script."""
    match = re.search(pattern, source, re.MULTILINE)
    assert match is not None, f"pattern {pattern!r} not found in script"
    return ast.literal_eval(match.group(1))


class FakeBoard(Transport):
    """
    In-memory stand-in for a MicroPython board on a serial port.

    Every reply is queued as a single chunk, in the order the host's
    writes trigger them.

    Attributes:
        files: Board path to file contents
        dirs: Board paths of directories
        scripts: Every script the board executed, in order
        written: Every byte the host wrote
        silent: When True the board swallows input and never replies
        outputs: Canned (stdout, stderr) replies for scripts that are not
                 recognised as picolink's own, keyed by script source
    """

    def __init__(self, files: Optional[dict] = None, dirs: Optional[set] = None):
        super().__init__()
        self.files: dict[str, bytes] = dict(files or {})
        self.dirs: set[str] = set(dirs or ())
        self.scripts: list[str] = []
        self.written = bytearray()
        self.silent = False
        self.outputs: dict[str, tuple[str, str]] = {}
        self.raw = False
        self.opened = False
        self.baud_rate: Optional[int] = None
        self.soft_resets = 0
        self._buffer = bytearray()
        self._upload: Optional[dict] = None
        self._queue: asyncio.Queue = asyncio.Queue()

    # =========================================================================
    # Transport hooks
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return self.opened

    async def _open(self, baud_rate: int) -> None:
        self.opened = True
        self.baud_rate = baud_rate
        self._queue = asyncio.Queue()

    async def _close(self) -> None:
        self.opened = False
        self._queue.put_nowait(None)

    async def _read_chunk(self) -> ReadResult:
        chunk = await self._queue.get()
        if chunk is None:
            return ReadResult(done=True)
        return ReadResult(value=chunk)

    async def _write_bytes(self, data: bytes) -> None:
        self.written.extend(data)
        if not self.silent:
            for byte in data:
                self._receive(byte)

    # =========================================================================
    # Test controls
    # =========================================================================

    def emit(self, data) -> None:
        """Queue bytes (or text) as if the board had sent them."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._queue.put_nowait(data)

    def unplug(self) -> None:
        """End the stream, as when the USB cable is pulled."""
        self.opened = False
        self._queue.put_nowait(None)

    def exists(self, path: str) -> bool:
        return path in self.files or path in self.dirs

    # =========================================================================
    # REPL behaviour
    # =========================================================================

    def _receive(self, byte: int) -> None:
        if self._upload is not None:
            self._receive_upload(byte)
        elif self.raw:
            self._raw_byte(byte)
        else:
            self._normal_byte(byte)

    def _normal_byte(self, byte: int) -> None:
        if byte == 0x01:
            self.raw = True
            self._buffer.clear()
            self.emit(RAW_BANNER)
        elif byte == 0x03:
            self.emit(NORMAL_PROMPT)
        elif byte == 0x04:
            self.emit("MPY: soft reboot" + GREETING)

    def _raw_byte(self, byte: int) -> None:
        if byte == 0x01:
            self._buffer.clear()
            self.emit(RAW_BANNER)
        elif byte == 0x02:
            self.raw = False
            self._buffer.clear()
            self.emit(GREETING)
        elif byte == 0x03:
            self._buffer.clear()
        elif byte == 0x04:
            if self._buffer.strip():
                source = self._buffer.decode("utf-8")
                self._buffer.clear()
                self.scripts.append(source)
                self._execute(source)
            else:
                self._buffer.clear()
                self.soft_resets += 1
                self.emit(SOFT_REBOOT)
        else:
            self._buffer.append(byte)

    # =========================================================================
    # Script effects
    # =========================================================================

    def _execute(self, source: str) -> None:
        if "json.dumps" in source:
            listing = json.dumps({"": self._listing("")})
            if r"\\u003e" in source:
                listing = listing.replace(">", "\\u003e")
            self._reply(listing + "\r\n")
        elif "kbd_intr(-1)" in source:
            path = _literal(r"^    w = open\((.+), 'wb'\)$", source)
            if path in self.dirs:
                self._reply("", open_traceback(21, "EISDIR"))
            elif parent_directory(path) in self.files:
                self._reply("", open_traceback(20, "ENOTDIR"))
            else:
                self._upload = {"path": path, "header": bytearray(), "data": bytearray()}
                self.emit("OKREADY\r\n")
        elif "###DONE READING FILE###" in source:
            path = _literal(r"^f = open\((.+), 'rb'\)$", source)
            if path in self.files:
                self.emit(b"OK" + self.files[path] + b"###DONE READING FILE###" + END_OF_REPLY.encode())
            else:
                self._reply("", ENOENT_TRACEBACK)
        elif "os.mkdir(path)" in source:
            for prefix in _literal(r"^for path in (\[.*\]):$", source):
                if prefix not in self.files:
                    self.dirs.add(prefix)
            self._reply("")
        elif "os.rename(" in source:
            new_path = _literal(r"^    os\.stat\((.+)\)$", source)
            old_path = _literal(r"^        os\.rename\((.+), " + re.escape(repr(new_path)) + r"\)$", source)
            self._reply(self._rename(old_path, new_path) + "\r\n")
        elif "def rm(d):" in source:
            if "os.listdir('/')" in source:
                tokens = [self._rm("/" + name) for name in self._names("")]
                tokens.append("rm_worked")
            else:
                tokens = [self._rm(_literal(r"^rm\((.+)\)$", source))]
            self._reply("".join(token + "\r\n" for token in tokens))
        else:
            self._reply(*self.outputs.get(source, ("", "")))

    def _reply(self, stdout: str, stderr: str = "") -> None:
        self.emit("OK" + stdout + "\x04" + stderr + "\x04>")

    def _receive_upload(self, byte: int) -> None:
        upload = self._upload
        if len(upload["header"]) < 7:
            upload["header"].append(byte)
        else:
            upload["data"].append(byte)

        if len(upload["header"]) < 7:
            return
        length = int(upload["header"].decode("ascii"))
        expected = -(-length // UPLOAD_BLOCK) * UPLOAD_BLOCK
        if len(upload["data"]) == expected:
            self.files[upload["path"]] = bytes(upload["data"][:length])
            self._upload = None
            self.emit(END_OF_REPLY)

    # =========================================================================
    # Filesystem
    # =========================================================================

    def _names(self, directory: str) -> list[str]:
        prefix = directory + "/"
        names = {
            path[len(prefix):]
            for path in list(self.files) + list(self.dirs)
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        }
        return sorted(names)

    def _listing(self, directory: str) -> list[dict]:
        entries = []
        for name in self._names(directory):
            path = f"{directory}/{name}"
            if path in self.dirs:
                entries.append({"D": name, "C": self._listing(path)})
            else:
                entries.append({"F": name})
        return entries

    def _rm(self, path: str) -> str:
        if not self.exists(path):
            return "rm_failed"
        self.files = {p: d for p, d in self.files.items() if p != path and not p.startswith(path + "/")}
        self.dirs = {d for d in self.dirs if d != path and not d.startswith(path + "/")}
        return "rm_worked"

    def _rename(self, old_path: str, new_path: str) -> str:
        if self.exists(new_path) or not self.exists(old_path):
            return "rename_error"

        def moved(path: str) -> str:
            if path == old_path or path.startswith(old_path + "/"):
                return new_path + path[len(old_path):]
            return path

        self.files = {moved(p): d for p, d in self.files.items()}
        self.dirs = {moved(d) for d in self.dirs}
        return "no_rename_error"


class RecordingObserver(DeviceObserver):
    """Records everything a driver reports."""

    def __init__(self):
        self.output: list[str] = []
        self.events: list[str] = []
        self.trees: list = []
        self.progress: list[tuple] = []

    @property
    def text(self) -> str:
        return "".join(self.output)

    def on_data(self, text):
        self.output.append(text)

    def on_connect(self):
        self.events.append("connect")

    def on_disconnect(self):
        self.events.append("disconnect")

    def on_filesystem(self, tree):
        self.trees.append(tree)

    def on_progress(self, percent, label=None):
        self.progress.append((percent, label))


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def board() -> FakeBoard:
    """A board holding /main.py and /lib/util.py."""
    return FakeBoard(
        files={
            "/main.py": b"print('hello')\n",
            "/lib/util.py": b"X = 1\n",
        },
        dirs={"/lib"},
    )


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def config() -> LinkConfig:
    """Link configuration with a timeout, so a protocol bug fails instead of hanging."""
    return LinkConfig(marker_timeout=5.0)


@pytest_asyncio.fixture
async def driver(board, observer, config):
    """A ReplDriver connected to the fake board."""
    repl = ReplDriver(board, observer, config)
    (await repl.connect()).unwrap()
    yield repl
    await repl.disconnect()
