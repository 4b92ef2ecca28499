"""
Raw REPL Driver
===============

High-level interface to a MicroPython board's filesystem. ReplDriver
wires the protocol components together around one SessionState:

    ReplDriver
    ├── SessionGuard        one operation at a time
    ├── FilesystemWalker    listing and the cached tree
    ├── FileTransfer        upload, download, directory creation
    ├── CommandExecutor     scripts in raw mode
    ├── ModeController      raw/normal transitions
    └── StreamSynchronizer  marker waits over the read loop

Every public operation is admitted by the guard and returns an
OperationResult. Operations that change the filesystem refresh the tree
before they return, so ``driver.tree`` always reflects the last change.

Example:
    async with ReplDriver(SerialTransport("/dev/ttyACM0")) as driver:
        await driver.upload("/main.py", "print('hello')\\n")
        print(list(driver.tree.paths()))
"""

import asyncio
import logging
from pathlib import Path
from typing import Final, Iterable, Mapping, Optional, Union

from picolink.comms.executor import CommandExecutor
from picolink.comms.guard import OperationResult, SessionGuard
from picolink.comms.mode import NORMAL_GREETING_OMIT, ModeController
from picolink.comms.scripts import (
    DELETE_FAILURE,
    DELETE_SUCCESS,
    RENAME_FAILURE,
    RENAME_SUCCESS,
    ScriptResult,
    clean_output_lines,
    delete_all_script,
    delete_script,
    parse_script_result,
    rename_script,
    sibling_path,
)
from picolink.comms.session import DeviceObserver, ReplMode, SessionState
from picolink.comms.sync import StreamSynchronizer
from picolink.comms.transfer import FileTransfer, normalize_text
from picolink.comms.transport import Transport
from picolink.comms.walker import DirectoryNode, FilesystemWalker
from picolink.config import LinkConfig, get_default_config
from picolink.errors import TransportError

# Configure module logger
logger = logging.getLogger(__name__)

Content = Union[str, bytes]

# Extensions uploaded as text (line endings normalised); everything else is binary
TEXT_EXTENSIONS: Final[frozenset[str]] = frozenset({".py", ".txt", ".text", ".cfg"})


def is_text_file(name: str) -> bool:
    """Return True if a file of this name is uploaded as text."""
    return Path(name).suffix.lower() in TEXT_EXTENSIONS


def encode_content(content: Content) -> bytes:
    """Bytes to upload for content; text gets LF line endings."""
    if isinstance(content, str):
        return normalize_text(content)
    return bytes(content)


class ReplDriver:
    """
    Filesystem access to a MicroPython board over its raw REPL.

    Args:
        transport: Byte stream to the board.
        observer: Receives output, lifecycle and progress events.
        config: Link configuration, defaults to get_default_config().
    """

    def __init__(
        self,
        transport: Transport,
        observer: Optional[DeviceObserver] = None,
        config: Optional[LinkConfig] = None,
    ):
        self.transport = transport
        self.observer = observer or DeviceObserver()
        self.config = config or get_default_config()
        self.state = SessionState()

        self.sync = StreamSynchronizer(self.state, self.observer, self._write, self.config)
        self.mode = ModeController(self.state, self.sync, self._write, self.config)
        self.executor = CommandExecutor(self.mode, self.sync, self._write, self.config)
        self.transfer = FileTransfer(
            self.executor, self.mode, self.sync, self._write, self.config, self.observer
        )
        self.walker = FilesystemWalker(self.executor, self.mode, self.observer)
        self.guard = SessionGuard(self.state, self.config.busy_policy)

        self._read_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def tree(self) -> Optional[DirectoryNode]:
        """The most recent filesystem tree, or None before the first walk."""
        return self.walker.tree

    @property
    def connected(self) -> bool:
        return not self.state.disconnected

    @property
    def busy(self) -> bool:
        return self.state.busy

    # =========================================================================
    # Connection Lifecycle
    # =========================================================================

    async def connect(self, baud_rate: Optional[int] = None) -> OperationResult[Optional[DirectoryNode]]:
        """
        Open the transport, bring the board to the normal REPL and walk
        its filesystem.

        Connecting while already connected re-synchronises the board.

        Raises:
            ConnectionError: If the transport cannot be opened.
        """
        return await self.guard.run(
            "connect", lambda: self._connect(baud_rate), require_connection=False
        )

    async def _connect(self, baud_rate: Optional[int]) -> Optional[DirectoryNode]:
        await self.transport.open(baud_rate or self.config.baud_rate)

        if self.state.disconnected:
            self.sync.reset()
            self.state.disconnected = False

        if not self.transport.writer_locked:
            self.transport.acquire_writer()
        if self._read_task is None or self._read_task.done():
            if not self.transport.reader_locked:
                self.transport.acquire_reader()
            self._read_task = asyncio.create_task(self._read_loop())

        logger.info("Connected")
        self.observer.on_connect()

        if not await self.mode.enter_normal():
            return None
        return await self.walker.walk()

    async def disconnect(self) -> None:
        """
        Close the link.

        Any wait in progress ends without a result and the busy flag is
        cleared, so the next connect() starts from a clean slate.
        """
        if self.state.disconnected and not self.transport.is_open:
            return

        self.state.disconnected = True
        self.sync.abort()

        task, self._read_task = self._read_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._drop_transport()
        logger.info("Disconnected")
        self.observer.on_disconnect()

    async def _drop_transport(self) -> None:
        self.transport.release_reader()
        self.transport.release_writer()
        self.guard.reset()
        self.state.mode = ReplMode.UNKNOWN
        try:
            await self.transport.close()
        except TransportError as e:
            logger.warning("Error closing transport: %s", e)

    async def _connection_lost(self, error: Exception) -> None:
        if self.state.disconnected:
            return
        logger.warning("Connection lost: %s", error)
        self.state.disconnected = True
        self.sync.abort()
        await self._drop_transport()
        self.observer.on_disconnect()

    async def _read_loop(self) -> None:
        """Feed everything the transport delivers into the synchronizer."""
        try:
            while not self.state.disconnected:
                result = await self.transport.read()
                if result.value:
                    self.sync.feed(result.value)
                if result.done:
                    await self._connection_lost(TransportError("stream ended"))
                    return
        except TransportError as e:
            await self._connection_lost(e)

    async def _write(self, data: bytes) -> None:
        if self.state.disconnected or not self.transport.writer_locked:
            logger.debug("Not writing %d bytes: no board connected", len(data))
            return
        logger.debug("TX %d bytes: %r", len(data), data[:32])
        try:
            await self.transport.write(data)
        except TransportError as e:
            await self._connection_lost(e)

    async def __aenter__(self) -> "ReplDriver":
        (await self.connect()).unwrap()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # =========================================================================
    # Listing and Reading
    # =========================================================================

    async def refresh_tree(self) -> OperationResult[Optional[DirectoryNode]]:
        """Walk the filesystem again; a failed walk keeps the previous tree."""
        return await self.guard.run("refresh", self.walker.walk)

    async def download(self, path: str, binary: bool = False) -> OperationResult[Content]:
        """
        Read a file from the board.

        Args:
            path: File to read.
            binary: Return bytes, exact for any content. Text mode decodes
                    the file as UTF-8.

        Raises:
            TransferError: If the board could not read the file.
        """
        return await self.guard.run("download", lambda: self.transfer.download(path, binary))

    # =========================================================================
    # Writing
    # =========================================================================

    async def upload(self, path: str, content: Content) -> OperationResult[bool]:
        """
        Write a file to the board, creating parent directories as needed.

        Args:
            path: Destination path.
            content: str is uploaded as text with LF line endings; bytes are
                     uploaded unchanged.

        Raises:
            SizeLimitError: If the payload is too large. Nothing is sent.
        """
        payload = encode_content(content)
        self.transfer.check_size(payload)

        async def operation() -> bool:
            ok = await self.transfer.upload(path, payload)
            if ok:
                await self.walker.walk()
            return ok

        return await self.guard.run("upload", operation)

    async def upload_files(
        self,
        directory: str,
        files: Iterable[Union[str, Path]],
    ) -> OperationResult[list[str]]:
        """
        Upload local files into a board directory.

        Files named *.py, *.txt, *.text or *.cfg are uploaded as text, the
        rest as binary. The tree is refreshed once, after the last file.

        Returns:
            Result whose value lists the board paths written.

        Raises:
            SizeLimitError: If any file is too large. Nothing is sent.
            OSError: If a local file cannot be read.
        """
        payloads: dict[str, bytes] = {}
        for file in map(Path, files):
            content = file.read_text(encoding="utf-8") if is_text_file(file.name) else file.read_bytes()
            payload = encode_content(content)
            self.transfer.check_size(payload)
            payloads[f"{directory.rstrip('/')}/{file.name}"] = payload

        async def operation() -> list[str]:
            written = []
            for path, payload in payloads.items():
                if not await self.transfer.upload(path, payload):
                    break
                written.append(path)
            await self.walker.walk()
            return written

        return await self.guard.run("upload files", operation)

    async def make_dirs(self, directory: str) -> OperationResult[bool]:
        """Create a directory and its parents; existing ones are fine."""
        async def operation() -> bool:
            ok = await self.transfer.build_path(directory)
            if ok:
                await self.walker.walk()
            return ok

        return await self.guard.run("make dirs", operation)

    async def delete(self, path: str) -> OperationResult[ScriptResult]:
        """Delete a file, or a directory with everything in it."""
        return await self.guard.run(
            "delete",
            lambda: self._run_mutation(delete_script(path), DELETE_SUCCESS, DELETE_FAILURE),
        )

    async def rename(self, old_path: str, new_name: str) -> OperationResult[ScriptResult]:
        """
        Rename a file or directory within its own directory.

        Fails (as a ScriptResult) when an entry called new_name exists.

        Raises:
            ValueError: If new_name is empty or contains a slash.
        """
        if not new_name or "/" in new_name:
            raise ValueError(f"Invalid new name: {new_name!r}")
        new_path = sibling_path(old_path, new_name)
        return await self.guard.run(
            "rename",
            lambda: self._run_mutation(
                rename_script(old_path, new_path), RENAME_SUCCESS, RENAME_FAILURE
            ),
        )

    async def delete_all(self) -> OperationResult[ScriptResult]:
        """Delete every file and directory on the board."""
        return await self.guard.run(
            "delete all",
            lambda: self._run_mutation(delete_all_script(), DELETE_SUCCESS, DELETE_FAILURE),
        )

    async def reformat(self, files: Mapping[str, Content]) -> OperationResult[ScriptResult]:
        """
        Wipe the board and install a fresh set of files.

        Args:
            files: Board path to content for every file to install.

        Raises:
            SizeLimitError: If any payload is too large. Nothing is sent.
        """
        payloads = {path: encode_content(content) for path, content in files.items()}
        for payload in payloads.values():
            self.transfer.check_size(payload)

        async def operation() -> ScriptResult:
            label = "Formatting board..."
            self.observer.on_progress(1, label)
            result = await self._run_mutation(delete_all_script(), DELETE_SUCCESS, DELETE_FAILURE)
            if not result:
                return result
            for index, (path, payload) in enumerate(payloads.items(), start=1):
                if not await self.transfer.upload(path, payload, progress=False):
                    return ScriptResult.failure(f"upload of {path} did not complete")
                self.observer.on_progress(100 * index // (len(payloads) + 1))
            await self.walker.walk()
            self.observer.on_progress(100)
            return ScriptResult.success()

        return await self.guard.run("reformat", operation)

    async def _run_mutation(
        self,
        script: str,
        success_token: str,
        failure_token: str,
    ) -> ScriptResult:
        lines = await self.executor.run_raw(script, wait_for_completion=True, omit_lines=1)
        result = parse_script_result(lines, success_token, failure_token)
        if lines is None:
            return result

        if not result:
            logger.warning("Board reported failure: %s", result.reason)
        if await self.mode.enter_normal(NORMAL_GREETING_OMIT):
            await self.walker.walk()
        return result

    # =========================================================================
    # Running Code
    # =========================================================================

    async def execute(self, source: str, echo: bool = True) -> OperationResult[str]:
        """
        Run source on the board and return what it printed.

        Args:
            source: Python source to run.
            echo: Also stream the output to the observer as it arrives.

        Returns:
            Result whose value is the combined stdout and stderr text.
        """
        async def operation() -> Optional[str]:
            lines = await self.executor.run_raw(
                source, wait_for_completion=True, omit_lines=1, echo=echo
            )
            if lines is None:
                return None
            output = "\r\n".join(clean_output_lines(lines)).rstrip("\r\n")
            if await self.mode.enter_normal(NORMAL_GREETING_OMIT):
                await self.walker.walk()
            return output

        return await self.guard.run("execute", operation)

    def cancel(self) -> None:
        """
        Cancel the wait the current operation is blocked in.

        The operation raises WaitCancelledError; the board may be left in
        raw mode until the next operation.
        """
        self.sync.cancel()
