"""Unit tests for the binary codec."""

import pytest

from hybrid_hr_ble.core.codec import ByteReader, ByteWriter, crc32, crc32c, read_u16, read_u32


def test_crc32_check_value():
    """Test the standard CRC32 check value."""
    assert crc32(b"123456789") == 0xCBF43926
    assert crc32(b"") == 0


def test_crc32c_check_value():
    """Test the Castagnoli CRC32C check value."""
    assert crc32c(b"123456789") == 0xE3069283


def test_byte_writer_little_endian():
    """Test little-endian encoding."""
    data = ByteWriter().u8(0x1FF).u16(0x1234).i16(-2).u32(0xDEADBEEF).raw(b"xy").to_bytes()

    assert data == bytes([0xFF, 0x34, 0x12, 0xFE, 0xFF, 0xEF, 0xBE, 0xAD, 0xDE]) + b"xy"


def test_byte_reader():
    """Test reading, peeking and skipping."""
    reader = ByteReader(bytes([0x01, 0x34, 0x12, 0xFE, 0xFF, 0xEF, 0xBE, 0xAD, 0xDE]))

    assert reader.peek() == 0x01
    assert reader.u8() == 0x01
    assert reader.u16() == 0x1234
    assert reader.i16() == -2
    assert reader.peek(3) == 0xDE
    assert reader.peek(4) is None
    assert reader.peek(-1) == 0xFF
    assert reader.u32() == 0xDEADBEEF
    assert reader.remaining == 0


def test_byte_reader_bounds():
    """Reads past the end raise, skips clamp."""
    reader = ByteReader(b"\x01\x02\x03")

    reader.skip(2)
    with pytest.raises(IndexError):
        reader.u16()
    assert reader.position == 2

    reader.skip(10)
    assert reader.position == 3
    assert reader.peek() is None


def test_fixed_offset_reads():
    """Test reads at fixed offsets."""
    data = bytes([0x08, 0x00, 0x08, 0x00, 0x78, 0x56, 0x34, 0x12])

    assert read_u16(data, 1) == 0x0800
    assert read_u32(data, 4) == 0x12345678
