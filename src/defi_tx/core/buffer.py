"""Byte-level helpers shared by every codec.

- Compact-size variable-length integers (1/3/5/9-byte forms)
- Length-prefixed byte strings
- Exact-length reads that fail loudly on truncation

All readers raise ``ValueError``; callers translate it into their own
typed error.
"""

from __future__ import annotations

import struct
from io import BytesIO

# ---------------------------------------------------------------------------
# Compact size
# ---------------------------------------------------------------------------

MAX_COMPACT_SIZE = 0xFFFFFFFFFFFFFFFF


def encode_varint(n: int) -> bytes:
    """Encode an integer as a compact-size variable-length integer."""
    if n < 0 or n > MAX_COMPACT_SIZE:
        msg = f"varint out of range: {n}"
        raise ValueError(msg)
    if n < 0xFD:
        return struct.pack("<B", n)
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def read_varint(stream: BytesIO) -> int:
    """Read a compact-size integer, rejecting non-minimal encodings."""
    first = read_exact(stream, 1)[0]
    if first < 0xFD:
        return first
    if first == 0xFD:
        n = struct.unpack("<H", read_exact(stream, 2))[0]
        floor = 0xFD
    elif first == 0xFE:
        n = struct.unpack("<I", read_exact(stream, 4))[0]
        floor = 0x10000
    else:
        n = struct.unpack("<Q", read_exact(stream, 8))[0]
        floor = 0x100000000
    if n < floor:
        msg = f"Non-canonical varint: {n} encoded with prefix {first:#x}"
        raise ValueError(msg)
    return n


# ---------------------------------------------------------------------------
# Raw reads
# ---------------------------------------------------------------------------


def read_exact(stream: BytesIO, length: int) -> bytes:
    """Read exactly *length* bytes or raise.

    Raises:
        ValueError: If the stream ends early.
    """
    data = stream.read(length)
    if len(data) != length:
        msg = f"Unexpected end of stream: wanted {length} bytes, got {len(data)}"
        raise ValueError(msg)
    return data


def read_struct(stream: BytesIO, fmt: str) -> int:
    """Read a single fixed-width integer described by a ``struct`` format."""
    return struct.unpack(fmt, read_exact(stream, struct.calcsize(fmt)))[0]


def remaining(stream: BytesIO) -> int:
    """Number of unread bytes left in *stream*."""
    return len(stream.getbuffer()) - stream.tell()


def ensure_consumed(stream: BytesIO) -> None:
    """Raise if any bytes are left unread."""
    left = remaining(stream)
    if left:
        msg = f"{left} trailing bytes after payload"
        raise ValueError(msg)


# ---------------------------------------------------------------------------
# Length-prefixed data
# ---------------------------------------------------------------------------


def encode_varbytes(data: bytes) -> bytes:
    """Prefix *data* with its compact-size length."""
    return encode_varint(len(data)) + data


def read_varbytes(stream: BytesIO) -> bytes:
    """Read a compact-size length followed by that many bytes."""
    return read_exact(stream, read_varint(stream))
