"""Composable field codecs for instruction records.

Each instruction (and each nested record inside one) is a frozen dataclass
whose fields declare their wire codec through :func:`wire`. Fields are
written in declaration order; there is no padding and no field tags.

Primitive codecs:

- ``U8`` / ``U16`` / ``U32`` / ``U64``: fixed-width little-endian unsigned
- ``AMOUNT``: 8-decimal fixed point as a signed 64-bit count of minor units
- ``VARUINT``: compact-size unsigned integer
- ``BOOL8`` / ``BOOL32``: 0/1 in one or four bytes
- ``UTF8``: compact-size length + UTF-8 bytes
- ``TXID``: 32-byte hash given as display-order hex, stored reversed
- ``SCRIPT``: compact-size length + raw script
- ``VARBYTES`` / ``FixedBytes(n)``: raw bytes, length-prefixed or fixed
"""

from __future__ import annotations

import dataclasses
import struct
from io import BytesIO
from typing import Any, Protocol, TypeVar

from defi_tx.core.buffer import (
    encode_varbytes,
    encode_varint,
    read_exact,
    read_struct,
    read_varbytes,
    read_varint,
    remaining,
)
from defi_tx.core.script import Script

R = TypeVar("R")


class FieldCodec(Protocol):
    """Encode one Python value to bytes and read it back."""

    def encode(self, value: Any) -> bytes: ...

    def decode(self, stream: BytesIO) -> Any: ...


# ---------------------------------------------------------------------------
# Primitive codecs
# ---------------------------------------------------------------------------


class FixedInt:
    """Fixed-width little-endian integer described by a ``struct`` format."""

    def __init__(self, fmt: str) -> None:
        self._fmt = fmt

    def encode(self, value: int) -> bytes:
        if isinstance(value, bool) or not isinstance(value, int):
            msg = f"expected int, got {type(value).__name__}"
            raise TypeError(msg)
        try:
            return struct.pack(self._fmt, value)
        except struct.error as exc:
            msg = f"{value} does not fit {self._fmt!r}"
            raise ValueError(msg) from exc

    def decode(self, stream: BytesIO) -> int:
        return read_struct(stream, self._fmt)


class VarUInt:
    def encode(self, value: int) -> bytes:
        return encode_varint(value)

    def decode(self, stream: BytesIO) -> int:
        return read_varint(stream)


class Bool:
    """Boolean stored as 0 or 1 in ``width`` bytes; any other value is rejected."""

    def __init__(self, width: int) -> None:
        self._width = width

    def encode(self, value: bool) -> bytes:
        return int(bool(value)).to_bytes(self._width, "little")

    def decode(self, stream: BytesIO) -> bool:
        n = int.from_bytes(read_exact(stream, self._width), "little")
        if n > 1:
            msg = f"invalid boolean value {n}"
            raise ValueError(msg)
        return n == 1


class Utf8:
    def encode(self, value: str) -> bytes:
        if not isinstance(value, str):
            msg = f"expected str, got {type(value).__name__}"
            raise TypeError(msg)
        return encode_varbytes(value.encode("utf-8"))

    def decode(self, stream: BytesIO) -> str:
        return read_varbytes(stream).decode("utf-8")


class TxId:
    """A 32-byte hash in display hex; the wire form is byte-reversed."""

    def encode(self, value: str) -> bytes:
        raw = bytes.fromhex(value)
        if len(raw) != 32:
            msg = f"expected 32-byte hex id, got {len(raw)} bytes"
            raise ValueError(msg)
        return raw[::-1]

    def decode(self, stream: BytesIO) -> str:
        return read_exact(stream, 32)[::-1].hex()


class FixedBytes:
    def __init__(self, length: int) -> None:
        self._length = length

    def encode(self, value: bytes) -> bytes:
        if len(value) != self._length:
            msg = f"expected {self._length} bytes, got {len(value)}"
            raise ValueError(msg)
        return bytes(value)

    def decode(self, stream: BytesIO) -> bytes:
        return read_exact(stream, self._length)


class VarBytes:
    def encode(self, value: bytes) -> bytes:
        return encode_varbytes(bytes(value))

    def decode(self, stream: BytesIO) -> bytes:
        return read_varbytes(stream)


class ScriptCodec:
    def encode(self, value: Script) -> bytes:
        if not isinstance(value, Script):
            msg = f"expected Script, got {type(value).__name__}"
            raise TypeError(msg)
        return value.serialize()

    def decode(self, stream: BytesIO) -> Script:
        return Script.read(stream)


U8 = FixedInt("<B")
U16 = FixedInt("<H")
U32 = FixedInt("<I")
U64 = FixedInt("<Q")
AMOUNT = FixedInt("<q")
VARUINT = VarUInt()
BOOL8 = Bool(1)
BOOL32 = Bool(4)
UTF8 = Utf8()
TXID = TxId()
SCRIPT = ScriptCodec()
VARBYTES = VarBytes()


# ---------------------------------------------------------------------------
# Combinators
# ---------------------------------------------------------------------------


class ArrayOf:
    """Compact-size count followed by that many items; decoded as a tuple."""

    def __init__(self, item: FieldCodec) -> None:
        self._item = item

    def encode(self, value: tuple[Any, ...]) -> bytes:
        return encode_varint(len(value)) + b"".join(self._item.encode(v) for v in value)

    def decode(self, stream: BytesIO) -> tuple[Any, ...]:
        return tuple(self._item.decode(stream) for _ in range(read_varint(stream)))


class OptionalTail:
    """A trailing field that is present only if bytes remain in the payload."""

    def __init__(self, item: FieldCodec) -> None:
        self._item = item

    def encode(self, value: Any) -> bytes:
        return b"" if value is None else self._item.encode(value)

    def decode(self, stream: BytesIO) -> Any:
        if remaining(stream) == 0:
            return None
        return self._item.decode(stream)


class Nested:
    """A nested record encoded field-by-field in place."""

    def __init__(self, record_type: type[Record]) -> None:
        self._type = record_type

    def encode(self, value: Record) -> bytes:
        if not isinstance(value, self._type):
            msg = f"expected {self._type.__name__}, got {type(value).__name__}"
            raise TypeError(msg)
        return encode_record(value)

    def decode(self, stream: BytesIO) -> Record:
        return decode_record(self._type, stream)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def wire(codec: FieldCodec, **kwargs: Any) -> Any:
    """Declare a dataclass field together with its wire codec."""
    return dataclasses.field(metadata={"codec": codec}, **kwargs)


@dataclasses.dataclass(frozen=True)
class Record:
    """Base for records whose fields are declared with :func:`wire`."""


def encode_record(record: Record) -> bytes:
    """Concatenate every wire field of *record* in declaration order."""
    return b"".join(
        f.metadata["codec"].encode(getattr(record, f.name)) for f in dataclasses.fields(record)
    )


def decode_record(record_type: type[R], stream: BytesIO) -> R:
    """Read the wire fields of *record_type* from *stream*."""
    values = {f.name: f.metadata["codec"].decode(stream) for f in dataclasses.fields(record_type)}
    return record_type(**values)
