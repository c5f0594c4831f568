"""
.pyc container header (PEP 552)

    0x00  magic         version tag: 2-byte magic number + b'\\r\\n'
    0x04  flags         bit 0: hash based, bit 1: check source
    0x08  8 bytes       hash based: source hash
                        otherwise:  mtime (u32) + source size (u32)
    0x10  marshal payload
"""

from common import *
import logging
import struct

from ..errors import MalformedInput, UnsupportedVersion
from .cursor import ByteCursor

__all__ = (
    'HEADER_SIZE',
    'HeaderFlags',
    'HeaderInfo',
    'validate_header',
    'detect_version',
)

logger = logging.getLogger(__name__)

HEADER_SIZE = 0x10


class HeaderFlags(IntFlag2):
    NONE            = 0
    HASH_BASED      = 1 << 0
    CHECK_SOURCE    = 1 << 1

    Mask            = HASH_BASED | CHECK_SOURCE


class HeaderInfo(StrictBase):
    magic       : bytes
    flags       : HeaderFlags
    trailing    : bytes                 # raw invalidation metadata, 8 bytes

    def __init__(self, magic: bytes, flags: HeaderFlags, trailing: bytes):
        self.magic      = magic
        self.flags      = flags
        self.trailing   = trailing

    @property
    def is_hash_based(self) -> bool:
        return bool(self.flags & HeaderFlags.HASH_BASED)

    @property
    def check_source(self) -> bool:
        return bool(self.flags & HeaderFlags.CHECK_SOURCE)

    @property
    def source_hash(self) -> bytes | None:
        return self.trailing if self.is_hash_based else None

    @property
    def mtime(self) -> int | None:
        return None if self.is_hash_based else struct.unpack('<I', self.trailing[:4])[0]

    @property
    def source_size(self) -> int | None:
        return None if self.is_hash_based else struct.unpack('<I', self.trailing[4:])[0]

    def __str__(self) -> str:
        if self.is_hash_based:
            return f'header(magic = {self.magic.hex()}, hash = {self.trailing.hex()}, check_source = {self.check_source})'

        return f'header(magic = {self.magic.hex()}, mtime = {self.mtime}, size = {self.source_size})'


def validate_header(cursor: ByteCursor, expected_magic: bytes) -> HeaderInfo:
    """
    Consume the 16-byte header and check its magic.

    On return the cursor is positioned at the first byte of the marshal
    payload.

    Raises:
        UnsupportedVersion: magic differs from expected_magic
        MalformedInput: unknown flag bits
        TruncatedInput: fewer than 16 bytes
    """
    start = cursor.position()

    magic = cursor.read_bytes(4)
    if magic != expected_magic:
        raise UnsupportedVersion(
            f'invalid magic number: expected {expected_magic.hex()}, got {magic.hex()}',
            start,
        )

    flags_pos = cursor.position()
    raw_flags = cursor.read_u32_le()
    if raw_flags & ~int(HeaderFlags.Mask):
        raise MalformedInput(f'invalid header flags 0x{raw_flags:08X}', flags_pos)

    flags = HeaderFlags(raw_flags)

    # Either an 8-byte source hash or mtime + source size
    info = HeaderInfo(magic, flags, cursor.read_bytes(8))
    logger.debug(f'{"hash" if info.is_hash_based else "timestamp"} based {info}')

    return info


def detect_version(magic: bytes) -> str:
    """
    Find the registered interpreter version that uses a magic tag.

    Raises:
        UnsupportedVersion: no registered table has this magic
    """
    from ..disasm.opcode_table import get_opcode_table, registered_versions

    for version in registered_versions():
        if get_opcode_table(version).magic == magic:
            return version

    raise UnsupportedVersion(f'unknown magic number {magic.hex()}', 0)
