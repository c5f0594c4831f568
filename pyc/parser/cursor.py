"""
Bounds-checked forward reader over an in-memory buffer
"""

import struct

from ..errors import TruncatedInput

__all__ = (
    'ByteCursor',
)


class ByteCursor:
    """
    Forward-only reader over a byte buffer.

    Every read checks the remaining length first and raises TruncatedInput
    carrying the offset of the failed read. Integers are little-endian
    unless the method name says otherwise.
    """

    def __init__(self, data: bytes | bytearray | memoryview, offset: int = 0):
        self._data = bytes(data)
        self._pos = offset

        if not 0 <= offset <= len(self._data):
            raise TruncatedInput(offset, 0, len(self._data))

    def __len__(self) -> int:
        return len(self._data)

    def position(self) -> int:
        return self._pos

    def remaining(self) -> int:
        return len(self._data) - self._pos

    def at_end(self) -> bool:
        return self._pos >= len(self._data)

    def _take(self, size: int) -> bytes:
        if size < 0 or size > self.remaining():
            raise TruncatedInput(self._pos, size, self.remaining())

        chunk = self._data[self._pos:self._pos + size]
        self._pos += size
        return chunk

    def read_bytes(self, size: int) -> bytes:
        return self._take(size)

    def skip(self, size: int):
        self._take(size)

    def read_u8(self) -> int:
        return self._take(1)[0]

    def read_i8(self) -> int:
        return struct.unpack('<b', self._take(1))[0]

    def read_u16_le(self) -> int:
        return struct.unpack('<H', self._take(2))[0]

    def read_u16_be(self) -> int:
        return struct.unpack('>H', self._take(2))[0]

    def read_i16_le(self) -> int:
        return struct.unpack('<h', self._take(2))[0]

    def read_u32_le(self) -> int:
        return struct.unpack('<I', self._take(4))[0]

    def read_i32_le(self) -> int:
        return struct.unpack('<i', self._take(4))[0]

    def read_f64_le(self) -> float:
        return struct.unpack('<d', self._take(8))[0]
