"""
Serial Port Utilities for MicroPython Boards
============================================

Finding, opening and talking to a MicroPython board over USB CDC.

Boards are recognised by their USB IDs. MicroPython on the Raspberry Pi
Pico enumerates as 2E8A:0005; other firmware builds from the same vendor
use other product IDs, and are accepted when no exact match is present.

Line settings are fixed at 8N1 with no flow control. The USB REPL
ignores them, but boards reached through a UART bridge do not.

pyserial is blocking. SerialTransport runs every read and write through
asyncio.to_thread(), and reads return after a short timeout so that the
read loop notices cancellation quickly.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from picolink.comms.transport import ReadResult, Transport
from picolink.errors import ConnectionError, TransportError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_BAUD_RATE: Final[int] = 115200

# Seconds a single blocking read may take
DEFAULT_TIMEOUT: Final[float] = 0.05

PICO_VENDOR_ID: Final[int] = 0x2E8A
PICO_PRODUCT_ID: Final[int] = 0x0005

# Vendors seen on MicroPython boards, native USB or through a bridge chip
KNOWN_VENDORS: Final[dict[int, str]] = {
    0x2E8A: "Raspberry Pi",
    0x303A: "Espressif",
    0x10C4: "Silicon Labs",
    0x1A86: "QinHeng",
    0x0403: "FTDI",
}

# Substrings of pyserial's open() errors, mapped to a hint for the user
_OPEN_HINTS: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (
        ("permission denied",),
        "Permission denied accessing {device}. Add your user to the 'dialout' "
        "group (sudo usermod -a -G dialout $USER) and log in again.",
    ),
    (
        ("no such file", "not found", "cannot find"),
        "Serial port not found: {device}. Run 'pclink ports' to see what is attached.",
    ),
    (
        ("busy", "in use", "access is denied"),
        "Serial port {device} is busy. Another program (Thonny, mpremote, "
        "screen) probably holds it open.",
    ),
)


# =============================================================================
# Port Information
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    One serial port as reported by the operating system.

    vid and pid are None for ports that are not USB devices.
    """

    device: str
    description: str
    manufacturer: Optional[str]
    product: Optional[str]
    serial_number: Optional[str]
    vid: Optional[int]
    pid: Optional[int]

    @classmethod
    def from_listing(cls, entry) -> "PortInfo":
        """Build from a pyserial ListPortInfo entry."""
        return cls(
            device=entry.device,
            description=entry.description or "",
            manufacturer=entry.manufacturer,
            product=entry.product,
            serial_number=entry.serial_number,
            vid=entry.vid,
            pid=entry.pid,
        )

    @property
    def is_usb(self) -> bool:
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        return KNOWN_VENDORS.get(self.vid) if self.is_usb else None

    @property
    def usb_id(self) -> Optional[str]:
        """Hex "VID:PID" string, or None for non-USB ports."""
        if not self.is_usb:
            return None
        return f"{self.vid:04X}:{self.pid or 0:04X}"

    def describe(self, detailed: bool = False) -> str:
        """Render the port for the ``ports`` command."""
        if not detailed:
            return f"  {self}"

        rows = [("Description", self.description), ("Manufacturer", self.manufacturer)]
        if self.usb_id:
            vendor = f" ({self.vendor_name})" if self.vendor_name else ""
            rows.append(("USB VID:PID", self.usb_id + vendor))
        rows.append(("Serial", self.serial_number))

        text = f"  {self.device}"
        for label, value in rows:
            if value:
                text += f"\n    {label}: {value}"
        return text

    def __str__(self) -> str:
        text = self.device
        if self.description:
            text += f" - {self.description}"
        if self.vendor_name:
            text += f" ({self.vendor_name})"
        return text


# =============================================================================
# Port Enumeration
# =============================================================================

def list_serial_ports() -> list[PortInfo]:
    """
    Return every serial port the operating system knows about, in the
    order pyserial lists them.
    """
    ports = [PortInfo.from_listing(entry) for entry in serial.tools.list_ports.comports()]
    for port in ports:
        logger.debug("Found port: %s [%s]", port.device, port.usb_id or "not USB")
    return ports


def find_device_port(
    vendor_id: int = PICO_VENDOR_ID,
    product_id: int = PICO_PRODUCT_ID,
) -> Optional[str]:
    """
    Pick the serial port the board is most likely on.

    A port whose vendor and product IDs both match wins over one that
    only matches the vendor. Ports from other vendors are never chosen,
    since raw REPL control bytes would be written to whatever is there.

    Returns:
        Device path, or None if no port matches.
    """
    best: Optional[PortInfo] = None
    for port in list_serial_ports():
        if port.vid != vendor_id:
            continue
        if port.pid == product_id:
            logger.info("Auto-detected board: %s (%s)", port.device, port.description)
            return port.device
        if best is None:
            best = port

    if best is None:
        logger.debug("No port with vendor ID %04X", vendor_id)
        return None

    logger.info("Using port with matching vendor: %s [%s]", best.device, best.usb_id)
    return best.device


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """Render ports one per line, or one block per port when verbose."""
    if not ports:
        return "No serial ports found."
    return "\n".join(port.describe(verbose) for port in ports)


# =============================================================================
# Opening and Closing
# =============================================================================

def open_serial_port(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> serial.Serial:
    """
    Open a port at 8N1 without flow control and discard stale input.

    Args:
        device: Device path ('/dev/ttyACM0', 'COM3').
        baud_rate: One of serial.Serial.BAUDRATES.
        timeout: Read timeout in seconds.

    Raises:
        ConnectionError: The port could not be opened. The message says
            what the user can do about it.
        ValueError: baud_rate is not a standard rate.
    """
    if baud_rate not in serial.Serial.BAUDRATES:
        raise ValueError(f"Invalid baud rate: {baud_rate}")

    logger.info("Opening serial port: %s at %d baud", device, baud_rate)
    try:
        port = serial.Serial(
            port=device,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
        )
    except serial.SerialException as e:
        reason = str(e).lower()
        for needles, hint in _OPEN_HINTS:
            if any(needle in reason for needle in needles):
                raise ConnectionError(hint.format(device=device)) from e
        raise ConnectionError(f"Cannot open {device}: {e}") from e

    port.reset_input_buffer()
    port.reset_output_buffer()
    return port


def close_serial_port(port: Optional[serial.Serial]) -> None:
    """Close a port if it is open. Failures are logged, not raised."""
    if port is None or not port.is_open:
        return
    try:
        port.close()
    except (serial.SerialException, OSError) as e:
        logger.warning("Error closing %s: %s", port.port, e)
    else:
        logger.debug("Closed %s", port.port)


# =============================================================================
# Serial Transport
# =============================================================================

class SerialTransport(Transport):
    """
    Transport over a pyserial port.

    Example:
        >>> transport = SerialTransport("/dev/ttyACM0")
        >>> driver = ReplDriver(transport)
        >>> await driver.connect()
    """

    def __init__(self, device: str, timeout: float = DEFAULT_TIMEOUT):
        super().__init__()
        self.device = device
        self.timeout = timeout
        self._port: Optional[serial.Serial] = None

    @classmethod
    def from_port(cls, port: serial.Serial) -> "SerialTransport":
        """Wrap a port that somebody else already opened."""
        transport = cls(port.port)
        transport._port = port
        return transport

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    async def _open(self, baud_rate: int) -> None:
        self._port = await asyncio.to_thread(
            open_serial_port, self.device, baud_rate, self.timeout
        )

    async def _close(self) -> None:
        port, self._port = self._port, None
        await asyncio.to_thread(close_serial_port, port)

    async def _read_chunk(self) -> ReadResult:
        port = self._port
        if port is None or not port.is_open:
            return ReadResult(done=True)
        try:
            data = await asyncio.to_thread(self._blocking_read, port)
        except (serial.SerialException, OSError, TypeError) as e:
            # pyserial raises TypeError when the port is closed mid-read
            raise TransportError(f"Read from {self.device} failed: {e}") from e
        return ReadResult(value=data)

    async def _write_bytes(self, data: bytes) -> None:
        port = self._port
        if port is None or not port.is_open:
            raise TransportError(f"Port {self.device} is not open")
        try:
            await asyncio.to_thread(self._blocking_write, port, data)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write to {self.device} failed: {e}") from e

    @staticmethod
    def _blocking_read(port: serial.Serial) -> bytes:
        return port.read(port.in_waiting or 1)

    @staticmethod
    def _blocking_write(port: serial.Serial, data: bytes) -> None:
        port.write(data)
        port.flush()
