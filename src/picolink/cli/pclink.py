"""
pclink - MicroPython Board File Manager
=======================================

This module implements the command-line interface for managing the
filesystem of a MicroPython board over its serial REPL.

Usage Examples
--------------
List available serial ports:
    $ pclink ports

List the files on the board:
    $ pclink ls

Copy files to and from the board:
    $ pclink put main.py
    $ pclink put sprite.bin /assets/sprite.bin
    $ pclink get /main.py main_backup.py

Manage files:
    $ pclink mkdir /lib/drivers
    $ pclink mv /old.py new.py
    $ pclink rm /lib

Run code:
    $ pclink exec -c "import sys; print(sys.implementation)"
    $ pclink exec script.py

Every command soft-resets the board: programs running on it are stopped.

Exit Codes
----------
0 - Success
1 - Connection, protocol or transfer error, or the board reported failure
2 - Invalid arguments or configuration error
3 - Internal error
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import click

from picolink import __version__
from picolink.cli.errors import ExitCode, handle_cli_exception
from picolink.comms import (
    DEFAULT_BAUD_RATE,
    DeviceObserver,
    DirectoryNode,
    ReplDriver,
    ScriptResult,
    SerialTransport,
    find_device_port,
    format_port_list,
    is_text_file,
    list_serial_ports,
)
from picolink.config import LinkConfig

# Configure logging
logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores common options like port, baud rate, and verbosity.
    """

    def __init__(self) -> None:
        self.port: Optional[str] = None
        self.baud: int = DEFAULT_BAUD_RATE
        self.verbose: bool = False
        self.timeout: Optional[float] = None

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.WARNING
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )

    def link_config(self) -> LinkConfig:
        """Environment configuration with the command-line overrides applied."""
        config = LinkConfig.from_env()
        if self.port:
            config.port = self.port
        config.baud_rate = self.baud
        if self.timeout is not None:
            config.marker_timeout = self.timeout
        return config


pass_context = click.make_pass_decorator(Context, ensure=True)


def progress_bar(percent: int, label: Optional[str] = None) -> None:
    """Simple text progress bar for uploads."""
    if label:
        click.echo(label, err=True)
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}%", nl=False, err=True)
    if percent >= 100:
        click.echo(err=True)


class ConsoleObserver(DeviceObserver):
    """Shows upload progress on stderr."""

    def __init__(self, show_progress: bool = False):
        self.show_progress = show_progress

    def on_progress(self, percent: int, label: Optional[str] = None) -> None:
        if self.show_progress:
            progress_bar(percent, label)

    def on_disconnect(self) -> None:
        logger.debug("Board disconnected")


def run_on_board(
    ctx: Context,
    work: Callable[[ReplDriver], Awaitable[T]],
    observer: Optional[DeviceObserver] = None,
) -> T:
    """
    Connect to the board, run work, disconnect, and map errors to exit codes.
    """
    config = ctx.link_config()
    port_device = config.port or find_device_port(config.usb_vendor_id, config.usb_product_id)
    if not port_device:
        click.echo("Error: No serial port specified and auto-detect failed.", err=True)
        click.echo("Use --port option or 'pclink ports' to find available ports.", err=True)
        raise SystemExit(ExitCode.DEVICE_ERROR)

    async def session() -> T:
        driver = ReplDriver(SerialTransport(port_device), observer or ConsoleObserver(), config)
        logger.info("Connecting to board on %s...", port_device)
        async with driver:
            return await work(driver)

    try:
        return asyncio.run(session())
    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose)


def check_script(outcome: Optional[ScriptResult], what: str) -> None:
    """Exit with an error if the board reported that what failed."""
    if outcome is not None and not outcome.ok:
        click.echo(f"Error: {what} failed on the board ({outcome.reason})", err=True)
        raise SystemExit(ExitCode.DEVICE_ERROR)


def format_tree(node: DirectoryNode, indent: str = "") -> list[str]:
    """Render a directory tree, directories marked with a trailing slash."""
    lines = []
    for child in node.children:
        if isinstance(child, DirectoryNode):
            lines.append(f"{indent}{child.name}/")
            lines.extend(format_tree(child, indent + "  "))
        else:
            lines.append(f"{indent}{child.name}")
    return lines


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (auto-detect if not specified)",
)
@click.option(
    "-b", "--baud",
    type=int,
    default=DEFAULT_BAUD_RATE,
    help=f"Baud rate (default: {DEFAULT_BAUD_RATE})",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Seconds to wait for each board reply (default: no limit)",
)
@click.version_option(version=__version__, prog_name="pclink")
@pass_context
def main(ctx: Context, port: Optional[str], baud: int, verbose: bool, timeout: Optional[float]) -> None:
    """
    Manage files on a MicroPython board over its serial REPL.

    The board is found automatically by its USB ID; use --port to pick
    a port yourself and 'pclink ports' to list candidates.
    """
    ctx.port = port
    ctx.baud = baud
    ctx.verbose = verbose
    ctx.timeout = timeout
    ctx.setup_logging()


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
@pass_context
def ports(ctx: Context, detailed: bool) -> None:
    """
    List available serial ports.

    Example:
        pclink ports
        pclink ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo("No serial ports found.")
        click.echo("\nTips:")
        click.echo("  - Connect the board with a data-capable USB cable")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    config = ctx.link_config()
    auto_port = find_device_port(config.usb_vendor_id, config.usb_product_id)
    if auto_port:
        click.echo(f"\nSuggested port for the board: {auto_port}")
    else:
        click.echo("\nNo MicroPython board auto-detected.")


# =============================================================================
# Listing and Transfer Commands
# =============================================================================

@main.command("ls")
@click.argument("path", default="/")
@pass_context
def list_files(ctx: Context, path: str) -> None:
    """
    List files on the board.

    Example:
        pclink ls
        pclink ls /lib
    """
    async def work(driver: ReplDriver) -> Optional[DirectoryNode]:
        return driver.tree

    tree = run_on_board(ctx, work)
    node = tree.find(path) if tree is not None else None
    if not isinstance(node, DirectoryNode):
        click.echo(f"Error: {path} is not a directory on the board", err=True)
        raise SystemExit(ExitCode.DEVICE_ERROR)

    lines = format_tree(node)
    if lines:
        for line in lines:
            click.echo(line)
    else:
        click.echo("(empty)")


@main.command()
@click.argument("remote")
@click.argument("local", type=click.Path(dir_okay=False), required=False)
@click.option(
    "--binary/--text", "binary",
    default=None,
    help="Transfer mode (default: text for .py/.txt/.text/.cfg files)",
)
@pass_context
def get(ctx: Context, remote: str, local: Optional[str], binary: Optional[bool]) -> None:
    """
    Copy REMOTE from the board to LOCAL (or to standard output).

    Example:
        pclink get /main.py
        pclink get /assets/sprite.bin sprite.bin
    """
    if binary is None:
        binary = not is_text_file(remote)

    async def work(driver: ReplDriver):
        return (await driver.download(remote, binary=binary)).unwrap()

    contents = run_on_board(ctx, work)

    if local is None:
        if binary:
            click.get_binary_stream("stdout").write(contents)
        else:
            click.echo(contents, nl=False)
        return

    if binary:
        Path(local).write_bytes(contents)
    else:
        Path(local).write_text(contents, encoding="utf-8")
    click.echo(f"Saved {remote} to {local}", err=True)


@main.command()
@click.argument("local", type=click.Path(exists=True, dir_okay=False))
@click.argument("remote", required=False)
@pass_context
def put(ctx: Context, local: str, remote: Optional[str]) -> None:
    """
    Copy LOCAL to the board, as REMOTE (default: /<file name>).

    Missing directories on the board are created. Files named *.py,
    *.txt, *.text and *.cfg are sent as text; anything else as binary.

    Example:
        pclink put main.py
        pclink put sprite.bin /assets/sprite.bin
    """
    source = Path(local)
    remote = remote or f"/{source.name}"
    content = source.read_text(encoding="utf-8") if is_text_file(source.name) else source.read_bytes()

    async def work(driver: ReplDriver) -> None:
        (await driver.upload(remote, content)).unwrap()

    run_on_board(ctx, work, ConsoleObserver(show_progress=True))
    click.echo(f"Uploaded {local} to {remote}")


# =============================================================================
# Filesystem Commands
# =============================================================================

@main.command()
@click.argument("remote")
@pass_context
def rm(ctx: Context, remote: str) -> None:
    """
    Delete a file or a directory (with its contents) on the board.

    Example:
        pclink rm /old.py
    """
    async def work(driver: ReplDriver) -> Optional[ScriptResult]:
        return (await driver.delete(remote)).unwrap()

    check_script(run_on_board(ctx, work), f"Deleting {remote}")
    click.echo(f"Deleted {remote}")


@main.command()
@click.argument("remote")
@click.argument("new_name")
@pass_context
def mv(ctx: Context, remote: str, new_name: str) -> None:
    """
    Rename REMOTE to NEW_NAME in the same directory.

    Refuses to overwrite an existing entry.

    Example:
        pclink mv /games/old.py new.py
    """
    async def work(driver: ReplDriver) -> Optional[ScriptResult]:
        return (await driver.rename(remote, new_name)).unwrap()

    check_script(run_on_board(ctx, work), f"Renaming {remote}")
    click.echo(f"Renamed {remote} to {new_name}")


@main.command()
@click.argument("remote")
@pass_context
def mkdir(ctx: Context, remote: str) -> None:
    """
    Create a directory and any missing parents on the board.

    Example:
        pclink mkdir /lib/drivers
    """
    async def work(driver: ReplDriver) -> None:
        (await driver.make_dirs(remote)).unwrap()

    run_on_board(ctx, work)
    click.echo(f"Created {remote}")


@main.command()
@click.option(
    "--install", "install_dir",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Local directory whose contents are installed after wiping",
)
@click.confirmation_option(prompt="Delete every file on the board?")
@pass_context
def wipe(ctx: Context, install_dir: Optional[str]) -> None:
    """
    Delete everything on the board, optionally installing fresh files.

    Example:
        pclink wipe
        pclink wipe --install firmware_files/
    """
    files = {}
    if install_dir:
        root = Path(install_dir)
        for file in sorted(p for p in root.rglob("*") if p.is_file()):
            board_path = "/" + file.relative_to(root).as_posix()
            files[board_path] = file.read_text(encoding="utf-8") if is_text_file(file.name) else file.read_bytes()

    async def work(driver: ReplDriver) -> Optional[ScriptResult]:
        if files:
            return (await driver.reformat(files)).unwrap()
        return (await driver.delete_all()).unwrap()

    check_script(run_on_board(ctx, work, ConsoleObserver(show_progress=bool(files))), "Wiping")
    click.echo(f"Board wiped{f', {len(files)} file(s) installed' if files else ''}")


# =============================================================================
# Exec Command
# =============================================================================

@main.command("exec")
@click.argument("script", type=click.Path(exists=True, dir_okay=False), required=False)
@click.option("-c", "--code", type=str, default=None, help="Source code to run")
@pass_context
def exec_code(ctx: Context, script: Optional[str], code: Optional[str]) -> None:
    """
    Run a script file, or code given with -c, on the board.

    Prints what the code printed, stdout and stderr combined, once it
    has finished.

    Example:
        pclink exec -c "print(1 + 1)"
        pclink exec blink.py
    """
    if (script is None) == (code is None):
        raise click.UsageError("Give either a SCRIPT file or --code, not both")
    source = code if code is not None else Path(script).read_text(encoding="utf-8")

    async def work(driver: ReplDriver) -> str:
        return (await driver.execute(source, echo=False)).unwrap()

    output = run_on_board(ctx, work)
    if output:
        click.echo(output.replace("\r\n", "\n"))


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
