from __future__ import annotations

import struct
import zlib
from typing import Final

import crcmod.predefined


_U8: Final = struct.Struct("<B")
_U16: Final = struct.Struct("<H")
_I16: Final = struct.Struct("<h")
_U32: Final = struct.Struct("<I")

_crc32c = crcmod.predefined.mkCrcFun("crc-32c")


def crc32(data: bytes) -> int:
    """Compute the standard (IEEE 802.3) CRC32 used to validate transfers.

    Args:
        data: The bytes to checksum.

    Returns:
        The unsigned 32-bit checksum.
    """
    return zlib.crc32(data) & 0xFFFFFFFF


def crc32c(data: bytes) -> int:
    """Compute the Castagnoli CRC32C used for file container trailers.

    Args:
        data: The bytes to checksum.

    Returns:
        The unsigned 32-bit checksum.
    """
    return _crc32c(data)


class ByteWriter:
    """Little-endian builder for outgoing frames."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def u8(self, value: int) -> ByteWriter:
        self._buffer += _U8.pack(value & 0xFF)
        return self

    def u16(self, value: int) -> ByteWriter:
        self._buffer += _U16.pack(value & 0xFFFF)
        return self

    def i16(self, value: int) -> ByteWriter:
        self._buffer += _I16.pack(value)
        return self

    def u32(self, value: int) -> ByteWriter:
        self._buffer += _U32.pack(value & 0xFFFFFFFF)
        return self

    def raw(self, data: bytes) -> ByteWriter:
        self._buffer += data
        return self

    def to_bytes(self) -> bytes:
        return bytes(self._buffer)


class ByteReader:
    """Little-endian cursor over a received buffer.

    Reads past the end raise ``IndexError``; ``peek`` returns None instead so
    decoders can look ahead without bounds checks.
    """

    def __init__(self, data: bytes, position: int = 0) -> None:
        self._data = data
        self.position = position

    def __len__(self) -> int:
        return len(self._data)

    @property
    def remaining(self) -> int:
        return max(len(self._data) - self.position, 0)

    def _take(self, size: int) -> bytes:
        end = self.position + size
        if size < 0 or end > len(self._data):
            raise IndexError(
                f"Read of {size} bytes at offset {self.position} exceeds buffer of {len(self._data)}"
            )
        chunk = self._data[self.position : end]
        self.position = end
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u16(self) -> int:
        return _U16.unpack(self._take(2))[0]

    def i16(self) -> int:
        return _I16.unpack(self._take(2))[0]

    def u32(self) -> int:
        return _U32.unpack(self._take(4))[0]

    def read(self, size: int) -> bytes:
        return self._take(size)

    def skip(self, size: int) -> None:
        """Advance the cursor, clamping at the end of the buffer."""
        self.position = min(self.position + size, len(self._data))

    def peek(self, offset: int = 0) -> int | None:
        index = self.position + offset
        if 0 <= index < len(self._data):
            return self._data[index]
        return None


def read_u16(data: bytes, offset: int) -> int:
    """Read a little-endian u16 at a fixed offset."""
    return _U16.unpack_from(data, offset)[0]


def read_u32(data: bytes, offset: int) -> int:
    """Read a little-endian u32 at a fixed offset."""
    return _U32.unpack_from(data, offset)[0]
