"""
Device Scripts
==============

Generators for the MicroPython source the driver runs on the board, and
the adapter that turns their printed tokens into results.

Every script is built here and nowhere else. Paths are embedded with
repr(), so a quote or backslash in a filename cannot break the script.

Result Tokens
-------------
Scripts that change the filesystem print a literal token on success or
failure, because an exception on the board reaches the host only as
text:

    delete      rm_worked / rm_failed
    rename      no_rename_error / rename_error
    upload      READY once the target file is open
"""

from dataclasses import dataclass
from typing import Final, Optional

from picolink.comms.sync import EOT, OK_TOKEN, RAW_PROMPT


# =============================================================================
# Constants
# =============================================================================

DELETE_SUCCESS: Final[str] = "rm_worked"
DELETE_FAILURE: Final[str] = "rm_failed"
RENAME_SUCCESS: Final[str] = "no_rename_error"
RENAME_FAILURE: Final[str] = "rename_error"

# Printed by the upload receiver once the target file is open
UPLOAD_READY: Final[str] = "READY"

# Printed after the last chunk of a download
DOWNLOAD_TERMINATOR: Final[str] = "###DONE READING FILE###"

# Chunk size used by the board when streaming a file back
DOWNLOAD_CHUNK_SIZE: Final[int] = 256

# Digits in the upload length header
LENGTH_HEADER_DIGITS: Final[int] = 7

# st_mode bit for directories in MicroPython's os.stat()
DIRECTORY_MODE_BIT: Final[int] = 0x4000


# =============================================================================
# Result Adapter
# =============================================================================

@dataclass(frozen=True)
class ScriptResult:
    """
    Outcome of a script that reports success or failure with tokens.

    Attributes:
        ok: True on success
        reason: Why the script failed (empty on success)
    """

    ok: bool
    reason: str = ""

    @classmethod
    def success(cls) -> "ScriptResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> "ScriptResult":
        return cls(ok=False, reason=reason)

    def __bool__(self) -> bool:
        return self.ok


def clean_output_lines(lines: list[str]) -> list[str]:
    """
    Strip raw REPL framing from collected output lines.

    Removes the leading "OK" of the first line and the Ctrl-D separators,
    and drops the trailing raw prompt.
    """
    cleaned = []
    for index, line in enumerate(lines):
        if index == 0 and line.startswith(OK_TOKEN):
            line = line[len(OK_TOKEN):]
        line = line.replace(EOT, "")
        if line.endswith(RAW_PROMPT) and index == len(lines) - 1:
            line = line[:-1]
        cleaned.append(line)
    return cleaned


def parse_script_result(
    lines: Optional[list[str]],
    success_token: str,
    failure_token: str,
) -> ScriptResult:
    """
    Interpret the printed tokens of a result-reporting script.

    Any failure token makes the whole result a failure, so a script that
    printed several tokens (delete-all) succeeds only if every step did.

    Example:
        >>> parse_script_result(["OKrm_worked", "\\x04\\x04>"], "rm_worked", "rm_failed")
        ScriptResult(ok=True, reason='')
    """
    if lines is None:
        return ScriptResult.failure("no response from device")

    tokens = [line.strip() for line in clean_output_lines(lines)]
    if failure_token in tokens:
        return ScriptResult.failure(failure_token)
    if success_token in tokens:
        return ScriptResult.success()
    return ScriptResult.failure("device did not report a result")


# =============================================================================
# Path Helpers
# =============================================================================

def path_prefixes(directory: str) -> list[str]:
    """
    Every directory that must exist for directory itself to exist.

    Example:
        >>> path_prefixes("/lib/drivers")
        ['/lib', '/lib/drivers']
        >>> path_prefixes("games/demo/")
        ['games', 'games/demo']
    """
    root = "/" if directory.startswith("/") else ""
    parts = [part for part in directory.split("/") if part]
    return [root + "/".join(parts[:i + 1]) for i in range(len(parts))]


def parent_directory(path: str) -> str:
    """
    Directory part of a board path ("" for a file at the top level).

    Example:
        >>> parent_directory("/lib/thumby.py")
        '/lib'
    """
    return path[:path.rfind("/")] if "/" in path else ""


def sibling_path(path: str, new_name: str) -> str:
    """
    Path of new_name in the same directory as path.

    Example:
        >>> sibling_path("/games/old.py", "new.py")
        '/games/new.py'
    """
    return path[:path.rfind("/") + 1] + new_name


# =============================================================================
# Script Generators
# =============================================================================

def walk_script() -> str:
    """
    Script that prints the whole filesystem as one JSON line.

    Output shape, keyed by the root directory name (empty):
        {"": [{"F": "main.py"}, {"D": "lib", "C": [{"F": "x.py"}]}]}
    """
    return (
        "import os\n"
        "try:\n"
        "    import json\n"
        "except ImportError:\n"
        "    import ujson as json\n"
        "def walk(top):\n"
        "    children = []\n"
        "    prefix = top + '/' if top else ''\n"
        "    for name in os.listdir(top):\n"
        f"        if os.stat(prefix + name)[0] & {DIRECTORY_MODE_BIT:#x}:\n"
        "            children.append({'D': name, 'C': walk(prefix + name)})\n"
        "        else:\n"
        "            children.append({'F': name})\n"
        "    return children\n"
        # ">" can only occur inside names, and must never reach the host unescaped
        "print(json.dumps({'': walk('')}).replace('>', '\\\\u003e'))\n"
    )


def make_dirs_script(directory: str) -> str:
    """Script that creates each segment of directory, ignoring existing ones."""
    return (
        "import os\n"
        f"for path in {path_prefixes(directory)!r}:\n"
        "    try:\n"
        "        os.mkdir(path)\n"
        "    except OSError:\n"
        "        pass\n"
    )


def upload_receiver_script(path: str, block_size: int = 255) -> str:
    """
    Script that receives one framed upload from stdin and writes it to path.

    Opens the file first and prints the ready token, so a path the board
    cannot write fails before any frame bytes are sent. Then reads the
    ASCII length header and whole blocks, keeping only the declared number
    of bytes so the 0xFF padding never reaches the file. Keyboard
    interrupts are disabled while receiving, since 0x03 is a valid data
    byte.
    """
    return (
        "import micropython\n"
        "import sys\n"
        "micropython.kbd_intr(-1)\n"
        "def read_exact(buf):\n"
        "    view = memoryview(buf)\n"
        "    got = 0\n"
        "    while got < len(buf):\n"
        "        got += sys.stdin.buffer.readinto(view[got:], len(buf) - got)\n"
        "    return buf\n"
        "try:\n"
        f"    w = open({path!r}, 'wb')\n"
        "except OSError:\n"
        "    micropython.kbd_intr(0x03)\n"
        "    raise\n"
        f"print({UPLOAD_READY!r})\n"
        f"remaining = int(read_exact(bytearray({LENGTH_HEADER_DIGITS})).decode('utf-8'))\n"
        f"block = bytearray({block_size})\n"
        "while remaining > 0:\n"
        "    read_exact(block)\n"
        f"    keep = min({block_size}, remaining)\n"
        "    w.write(block[:keep])\n"
        "    remaining -= keep\n"
        "w.close()\n"
        "micropython.kbd_intr(0x03)\n"
    )


def download_script(path: str) -> str:
    """Script that streams path to stdout, then prints the terminator."""
    return (
        "import sys\n"
        f"f = open({path!r}, 'rb')\n"
        "while True:\n"
        f"    data = f.read({DOWNLOAD_CHUNK_SIZE})\n"
        "    if not data:\n"
        "        break\n"
        "    sys.stdout.buffer.write(data)\n"
        "f.close()\n"
        f"sys.stdout.write({DOWNLOAD_TERMINATOR!r})\n"
    )


_RM_FUNCTION = (
    "import os\n"
    "def rm(d):\n"
    "    try:\n"
    f"        if os.stat(d)[0] & {DIRECTORY_MODE_BIT:#x}:\n"
    "            for f in os.ilistdir(d):\n"
    "                if f[0] not in ('.', '..'):\n"
    "                    rm('/'.join((d, f[0])))\n"
    "            os.rmdir(d)\n"
    "        else:\n"
    "            os.remove(d)\n"
    f"        print({DELETE_SUCCESS!r})\n"
    "    except OSError:\n"
    f"        print({DELETE_FAILURE!r})\n"
)


def delete_script(path: str) -> str:
    """Script that removes a file or a whole directory tree."""
    return _RM_FUNCTION + f"rm({path!r})\n"


def delete_all_script() -> str:
    """
    Script that removes everything under the root directory.

    Prints a final success token so an already empty board still reports.
    """
    return (
        _RM_FUNCTION
        + "for name in os.listdir('/'):\n"
        + "    rm('/' + name)\n"
        + f"print({DELETE_SUCCESS!r})\n"
    )


def rename_script(old_path: str, new_path: str) -> str:
    """Script that renames old_path unless new_path already exists."""
    return (
        "import os\n"
        "try:\n"
        f"    os.stat({new_path!r})\n"
        "    exists = True\n"
        "except OSError:\n"
        "    exists = False\n"
        "if exists:\n"
        f"    print({RENAME_FAILURE!r})\n"
        "else:\n"
        "    try:\n"
        f"        os.rename({old_path!r}, {new_path!r})\n"
        f"        print({RENAME_SUCCESS!r})\n"
        "    except OSError:\n"
        f"        print({RENAME_FAILURE!r})\n"
    )
