"""
Tests for Serial Port Utilities
===============================

Port enumeration, auto-detection and the pyserial transport. pyserial
is mocked; no hardware is needed.
"""

from unittest.mock import Mock, patch

import pytest
import serial

from picolink.comms.serial import (
    DEFAULT_BAUD_RATE,
    PortInfo,
    SerialTransport,
    find_device_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)
from picolink.errors import ConnectionError, TransportError

BAUDRATES = serial.Serial.BAUDRATES


def make_port(device, vid=None, pid=None, description="USB Serial"):
    port = Mock()
    port.device = device
    port.description = description
    port.manufacturer = None
    port.product = None
    port.serial_number = None
    port.vid = vid
    port.pid = pid
    return port


def make_serial(is_open=True):
    port = Mock()
    port.port = "/dev/ttyACM0"
    port.is_open = is_open
    port.in_waiting = 0
    return port


# =============================================================================
# Port Information Tests
# =============================================================================

class TestPortInfo:
    """Tests for PortInfo."""

    def test_usb_port(self):
        info = PortInfo("/dev/ttyACM0", "Board in FS mode", None, None, None, 0x2E8A, 0x0005)
        assert info.is_usb
        assert info.vendor_name == "Raspberry Pi"
        assert "(Raspberry Pi)" in str(info)

    def test_non_usb_port(self):
        info = PortInfo("/dev/ttyS0", "Serial Port", None, None, None, None, None)
        assert not info.is_usb
        assert info.vendor_name is None

    def test_format_empty(self):
        assert "No serial ports" in format_port_list([])

    def test_format_detailed(self):
        ports = [PortInfo("/dev/ttyACM0", "Board", "MicroPython", None, "E66", 0x2E8A, 0x0005)]
        result = format_port_list(ports, verbose=True)
        assert "2E8A:0005" in result
        assert "Serial: E66" in result


# =============================================================================
# Detection Tests
# =============================================================================

class TestDetection:
    """Tests for list_serial_ports() and find_device_port()."""

    def test_list(self):
        with patch("serial.tools.list_ports.comports", return_value=[
            make_port("/dev/ttyS0", description=None),
            make_port("/dev/ttyACM0", 0x2E8A, 0x0005),
        ]):
            ports = list_serial_ports()

        assert [p.device for p in ports] == ["/dev/ttyS0", "/dev/ttyACM0"]
        assert ports[0].description == ""

    def test_prefers_exact_match(self):
        with patch("serial.tools.list_ports.comports", return_value=[
            make_port("/dev/ttyACM0", 0x2E8A, 0x000A),
            make_port("/dev/ttyACM1", 0x2E8A, 0x0005),
        ]):
            assert find_device_port() == "/dev/ttyACM1"

    def test_falls_back_to_vendor(self):
        with patch("serial.tools.list_ports.comports", return_value=[
            make_port("/dev/ttyUSB0", 0x0403, 0x6001),
            make_port("/dev/ttyACM0", 0x2E8A, 0x000A),
        ]):
            assert find_device_port() == "/dev/ttyACM0"

    def test_ignores_unrelated_usb_devices(self):
        with patch("serial.tools.list_ports.comports", return_value=[
            make_port("/dev/ttyUSB0", 0x0403, 0x6001),
        ]):
            assert find_device_port() is None

    def test_custom_ids(self):
        with patch("serial.tools.list_ports.comports", return_value=[
            make_port("/dev/ttyUSB0", 0x10C4, 0xEA60),
        ]):
            assert find_device_port(0x10C4, 0xEA60) == "/dev/ttyUSB0"

    def test_no_ports(self):
        with patch("serial.tools.list_ports.comports", return_value=[]):
            assert find_device_port() is None


# =============================================================================
# Port Opening Tests
# =============================================================================

class TestOpenSerialPort:
    """Tests for open_serial_port()."""

    def test_opens_with_link_settings(self):
        with patch("serial.Serial") as serial_class:
            serial_class.BAUDRATES = BAUDRATES
            port = open_serial_port("/dev/ttyACM0")

        kwargs = serial_class.call_args.kwargs
        assert kwargs["baudrate"] == DEFAULT_BAUD_RATE
        assert kwargs["bytesize"] == serial.EIGHTBITS
        assert kwargs["rtscts"] is False
        port.reset_input_buffer.assert_called_once()

    def test_invalid_baud_rate(self):
        with pytest.raises(ValueError):
            open_serial_port("/dev/ttyACM0", 12345)

    @pytest.mark.parametrize("message, expected", [
        ("[Errno 13] Permission denied: '/dev/ttyACM0'", "dialout"),
        ("[Errno 2] No such file or directory: '/dev/ttyACM9'", "pclink ports"),
        ("[Errno 16] Device or resource busy", "busy"),
        ("something odd", "Cannot open"),
    ])
    def test_friendly_errors(self, message, expected):
        with patch("serial.Serial") as serial_class:
            serial_class.BAUDRATES = BAUDRATES
            serial_class.side_effect = serial.SerialException(message)
            with pytest.raises(ConnectionError, match=expected):
                open_serial_port("/dev/ttyACM0")


# =============================================================================
# Transport Tests
# =============================================================================

class TestSerialTransport:
    """Tests for SerialTransport over a mocked port."""

    @pytest.mark.asyncio
    async def test_read(self):
        port = make_serial()
        port.in_waiting = 3
        port.read.return_value = b"abc"
        transport = SerialTransport.from_port(port)
        transport.acquire_reader()

        result = await transport.read()

        assert result.value == b"abc"
        assert not result.done
        port.read.assert_called_once_with(3)

    @pytest.mark.asyncio
    async def test_read_closed_port(self):
        transport = SerialTransport.from_port(make_serial(is_open=False))
        transport.acquire_reader()
        assert (await transport.read()).done

    @pytest.mark.asyncio
    async def test_read_failure(self):
        port = make_serial()
        port.read.side_effect = serial.SerialException("device reports readiness to read but returned no data")
        transport = SerialTransport.from_port(port)
        transport.acquire_reader()

        with pytest.raises(TransportError):
            await transport.read()

    @pytest.mark.asyncio
    async def test_write_flushes(self):
        port = make_serial()
        transport = SerialTransport.from_port(port)
        transport.acquire_writer()

        await transport.write(b"\r\x01")

        port.write.assert_called_once_with(b"\r\x01")
        port.flush.assert_called_once()

    @pytest.mark.asyncio
    async def test_write_failure(self):
        port = make_serial()
        port.write.side_effect = OSError("I/O error")
        transport = SerialTransport.from_port(port)
        transport.acquire_writer()

        with pytest.raises(TransportError):
            await transport.write(b"x")

    @pytest.mark.asyncio
    async def test_open_reuses_open_port(self):
        port = make_serial()
        transport = SerialTransport.from_port(port)
        with patch("picolink.comms.serial.open_serial_port") as opener:
            await transport.open(115200)
        opener.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_and_close(self):
        port = make_serial()
        transport = SerialTransport("/dev/ttyACM0")
        with patch("picolink.comms.serial.open_serial_port", return_value=port) as opener:
            await transport.open(115200)
        opener.assert_called_once_with("/dev/ttyACM0", 115200, transport.timeout)
        assert transport.is_open

        await transport.close()

        port.close.assert_called_once()
        assert not transport.is_open
