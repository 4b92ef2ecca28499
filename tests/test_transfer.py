"""
Tests for the File Transfer Engine
==================================

This module tests uploads and downloads:
- Upload framing (length header, 255-byte blocks, 0xFF padding)
- Text normalisation and payload extraction
- Byte-exact binary round trips through the fake board
- The upload size limit
- Progress reporting
"""

import pytest

from picolink.comms.transfer import (
    MAX_UPLOAD_SIZE,
    PAD_BYTE,
    SEND_BLOCK_SIZE,
    build_upload_frame,
    extract_binary_payload,
    extract_text_payload,
    normalize_text,
)
from picolink.errors import SizeLimitError, TransferError


# =============================================================================
# Framing Tests
# =============================================================================

class TestUploadFrame:
    """Tests for build_upload_frame()."""

    def test_600_bytes(self):
        payload = bytes(range(200)) * 3
        frame = build_upload_frame(payload)

        assert frame.header == b"0000600"
        assert [len(b) for b in frame.blocks] == [255, 255, 255]
        assert frame.padding == 165
        assert frame.blocks[-1][90:] == bytes([PAD_BYTE]) * 165
        assert frame.to_bytes()[7:7 + 600] == payload

    def test_exact_multiple_has_no_padding(self):
        frame = build_upload_frame(b"a" * 510)
        assert frame.header == b"0000510"
        assert len(frame.blocks) == 2
        assert frame.padding == 0

    def test_empty_payload(self):
        frame = build_upload_frame(b"")
        assert frame.header == b"0000000"
        assert frame.blocks == ()
        assert frame.to_bytes() == b"0000000"

    def test_every_block_is_full_size(self):
        for size in (1, 254, 255, 256, 1000):
            frame = build_upload_frame(b"x" * size)
            assert all(len(block) == SEND_BLOCK_SIZE for block in frame.blocks)
            assert frame.declared_length == size

    def test_header_overflow(self):
        with pytest.raises(SizeLimitError):
            build_upload_frame(b"x" * 10_000_000)


class TestNormalizeText:
    """Tests for line ending normalisation."""

    def test_crlf_and_cr(self):
        assert normalize_text("a\r\nb\rc\n") == b"a\nb\nc\n"

    def test_utf8(self):
        assert normalize_text("héllo") == "héllo".encode("utf-8")


class TestExtractPayload:
    """Tests for download payload extraction."""

    def test_text(self):
        lines = ["OKline one", "line two###DONE READING FILE###\x04\x04>"]
        assert extract_text_payload(lines) == "line one\r\nline two"

    def test_text_without_terminator(self):
        assert extract_text_payload(["OK\x04Traceback", "\x04>"]) is None

    def test_binary(self):
        data = bytes([0x00, 0xFF, 0x4F, 0x4B])
        captured = b"OK" + data + b"###DONE READING FILE###\x04\x04>"
        assert extract_binary_payload(captured) == data

    def test_binary_without_terminator(self):
        assert extract_binary_payload(b"OK\x04OSError\x04>") is None


# =============================================================================
# Upload Tests
# =============================================================================

class TestUpload:
    """Uploads through the driver to the fake board."""

    @pytest.mark.asyncio
    async def test_binary_round_trip(self, driver, board):
        """Bytes 0x00 and 0xFF, padding-like tails and a Ctrl-C all survive."""
        payload = bytes(range(256)) + b"\xff" * 100 + b"\x03\x04"

        result = await driver.upload("/data.bin", payload)

        assert result.ok and result.value is True
        assert board.files["/data.bin"] == payload
        downloaded = await driver.download("/data.bin", binary=True)
        assert downloaded.value == payload

    @pytest.mark.asyncio
    async def test_text_upload_normalises_line_endings(self, driver, board):
        await driver.upload("/notes.txt", "one\r\ntwo\r\n")
        assert board.files["/notes.txt"] == b"one\ntwo\n"

    @pytest.mark.asyncio
    async def test_empty_file(self, driver, board):
        assert (await driver.upload("/empty.py", b"")).value is True
        assert board.files["/empty.py"] == b""

    @pytest.mark.asyncio
    async def test_creates_parent_directories(self, driver, board):
        await driver.upload("/games/demo/main.py", "print(1)\n")

        assert {"/games", "/games/demo"} <= board.dirs
        assert driver.tree.find("/games/demo/main.py") is not None

    @pytest.mark.asyncio
    async def test_board_back_in_normal_mode(self, driver, board):
        await driver.upload("/main.py", "pass\n")
        assert not board.raw

    @pytest.mark.asyncio
    async def test_size_limit_checked_before_any_io(self, driver, board):
        board.written.clear()

        with pytest.raises(SizeLimitError) as exc_info:
            await driver.upload("/big.bin", b"\x00" * MAX_UPLOAD_SIZE)

        assert exc_info.value.size == MAX_UPLOAD_SIZE
        assert board.written == bytearray()
        assert not driver.busy

    @pytest.mark.asyncio
    async def test_target_is_a_directory(self, driver, board):
        """A receiver that cannot open its file fails before any frame is sent."""
        board.written.clear()

        with pytest.raises(TransferError, match="EISDIR"):
            await driver.upload("/lib", "print(1)\n")

        assert b"0000009" not in board.written
        assert not board.raw
        assert not driver.busy
        assert (await driver.download("/main.py")).value == "print('hello')\n"

    @pytest.mark.asyncio
    async def test_target_under_a_file(self, driver, board):
        with pytest.raises(TransferError, match="ENOTDIR"):
            await driver.upload("/main.py/inner.py", b"\x00")

        assert board.files["/main.py"] == b"print('hello')\n"
        assert not driver.busy

    @pytest.mark.asyncio
    async def test_just_under_limit_is_accepted(self, driver):
        driver.transfer.check_size(b"\x00" * (MAX_UPLOAD_SIZE - 1))

    @pytest.mark.asyncio
    async def test_progress(self, driver, observer):
        observer.progress.clear()

        await driver.upload("/lib/big.py", "x = 1\n" * 200)

        percents = [p for p, _ in observer.progress]
        assert percents[0] == 1
        assert observer.progress[0][1] == "Uploading /lib/big.py"
        assert percents[1:3] == [2, 3]
        assert percents[-1] == 100
        assert percents == sorted(percents)


# =============================================================================
# Download Tests
# =============================================================================

class TestDownload:
    """Downloads through the driver from the fake board."""

    @pytest.mark.asyncio
    async def test_text(self, driver):
        result = await driver.download("/main.py")
        assert result.value == "print('hello')\n"

    @pytest.mark.asyncio
    async def test_text_with_crlf_content(self, driver, board):
        board.files["/crlf.txt"] = b"a\r\nb"
        assert (await driver.download("/crlf.txt")).value == "a\r\nb"

    @pytest.mark.asyncio
    async def test_binary_larger_than_one_chunk(self, driver, board):
        data = bytes(range(256)) * 5
        board.files["/blob.bin"] = data
        assert (await driver.download("/blob.bin", binary=True)).value == data

    @pytest.mark.asyncio
    async def test_missing_file(self, driver, board):
        with pytest.raises(TransferError, match="ENOENT"):
            await driver.download("/missing.py")
        assert not board.raw
        assert not driver.busy

    @pytest.mark.asyncio
    async def test_raw_capture_released(self, driver):
        await driver.download("/main.py", binary=True)
        assert driver.state.raw_capture is None
