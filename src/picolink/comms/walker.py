"""
Filesystem Walker
=================

Lists the board's whole filesystem in one raw REPL exchange and parses
the result into an immutable tree.

The walk script prints a single JSON line keyed by the root directory
name, each directory holding its children in listing order:

    {"": [{"F": "main.py"},
          {"D": "lib", "C": [{"F": "ssd1306.py"}]}]}

Entries tagged "F" are files, entries tagged "D" are directories with
their own children under "C". The tree is rebuilt from scratch on every
walk; a failed walk leaves the previous tree in place.
"""

import json
import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Union

from picolink.comms.executor import CommandExecutor
from picolink.comms.mode import NORMAL_GREETING_OMIT, ModeController
from picolink.comms.scripts import clean_output_lines, walk_script
from picolink.comms.session import DeviceObserver
from picolink.errors import ProtocolError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Tree Nodes
# =============================================================================

@dataclass(frozen=True)
class FileNode:
    name: str


@dataclass(frozen=True)
class DirectoryNode:
    """
    A directory and its entries, in the order the board listed them.

    Example:
        >>> tree = DirectoryNode("", (FileNode("main.py"), DirectoryNode("lib", ())))
        >>> list(tree.paths())
        ['/main.py', '/lib']
    """

    name: str
    children: tuple["FsNode", ...] = ()

    def paths(self, prefix: str = "") -> Iterator[str]:
        """Yield the absolute path of every entry below this directory."""
        for child in self.children:
            path = f"{prefix}/{child.name}"
            yield path
            if isinstance(child, DirectoryNode):
                yield from child.paths(path)

    def find(self, path: str) -> Optional["FsNode"]:
        """Look up an entry by path relative to this directory."""
        node: FsNode = self
        for part in (p for p in path.split("/") if p):
            if not isinstance(node, DirectoryNode):
                return None
            node = next((c for c in node.children if c.name == part), None)
            if node is None:
                return None
        return node


FsNode = Union[FileNode, DirectoryNode]


# =============================================================================
# Parsing
# =============================================================================

def _parse_entries(entries: object, where: str) -> tuple[FsNode, ...]:
    if not isinstance(entries, list):
        raise ProtocolError(f"Expected a list of entries in {where!r}")

    nodes: list[FsNode] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ProtocolError(f"Malformed entry in {where!r}: {entry!r}")
        if "F" in entry:
            nodes.append(FileNode(str(entry["F"])))
        elif "D" in entry:
            name = str(entry["D"])
            nodes.append(DirectoryNode(name, _parse_entries(entry.get("C", []), name)))
        else:
            raise ProtocolError(f"Entry in {where!r} is neither file nor directory: {entry!r}")
    return tuple(nodes)


def parse_tree(blob: str) -> DirectoryNode:
    """
    Parse the walk script's JSON output.

    Raises:
        ProtocolError: If blob is not a well-formed listing.

    Example:
        >>> parse_tree('{"": [{"F": "main.py"}]}')
        DirectoryNode(name='', children=(FileNode(name='main.py'),))
    """
    try:
        data = json.loads(blob)
    except ValueError as e:
        raise ProtocolError(f"Filesystem listing is not valid JSON: {e}") from e

    if not isinstance(data, dict) or len(data) != 1:
        raise ProtocolError("Filesystem listing must have exactly one root")

    root_name, entries = next(iter(data.items()))
    return DirectoryNode(root_name, _parse_entries(entries, root_name))


# =============================================================================
# Walker
# =============================================================================

class FilesystemWalker:
    """Runs the walk script and keeps the latest tree."""

    def __init__(
        self,
        executor: CommandExecutor,
        mode: ModeController,
        observer: DeviceObserver,
    ):
        self.executor = executor
        self.mode = mode
        self.observer = observer
        self.tree: Optional[DirectoryNode] = None

    async def walk(self) -> Optional[DirectoryNode]:
        """
        Refresh the tree from the board.

        Returns:
            The new tree, or None if the walk failed. On failure the
            previous tree is kept.
        """
        lines = await self.executor.run_raw(walk_script(), wait_for_completion=True, omit_lines=1)
        if lines is None:
            logger.info("Filesystem walk abandoned, keeping previous tree")
            return None

        blob = clean_output_lines(lines)[0] if lines else ""
        try:
            tree = parse_tree(blob)
        except ProtocolError as e:
            logger.warning("Could not parse filesystem listing: %s", e)
            tree = None

        if not await self.mode.enter_normal(NORMAL_GREETING_OMIT):
            return None

        if tree is not None:
            self.tree = tree
            self.observer.on_filesystem(tree)
        return tree
