"""Script assembly — opcodes, push encoding, locking and embedded-data scripts.

A :class:`Script` is an immutable wrapper around the raw opcode stream.
Provides:
- Minimal push-data encoding and opcode-stream parsing
- P2WPKH locking scripts (``OP_0 <20-byte hash>``) and the P2PKH script code
  signed by BIP143
- ``OP_RETURN`` scripts carrying an encoded instruction
- Length-prefixed serialization shared with the instruction and container codecs
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from io import BytesIO
from typing import Self

from defi_tx.core.buffer import encode_varbytes, read_exact, read_varbytes

# ---------------------------------------------------------------------------
# Opcodes
# ---------------------------------------------------------------------------


class OpCode(int, enum.Enum):
    """Opcodes the assembler emits or recognises."""

    OP_0 = 0x00
    OP_PUSHDATA1 = 0x4C
    OP_PUSHDATA2 = 0x4D
    OP_PUSHDATA4 = 0x4E
    OP_1NEGATE = 0x4F
    OP_1 = 0x51
    OP_16 = 0x60
    OP_RETURN = 0x6A
    OP_DUP = 0x76
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88
    OP_HASH160 = 0xA9
    OP_CHECKSIG = 0xAC


class ScriptType(enum.StrEnum):
    """Known script types."""

    P2WPKH = "witness_v0_keyhash"
    P2PKH = "pubkeyhash"
    P2SH = "scripthash"
    NULL_DATA = "nulldata"
    UNKNOWN = "unknown"


#: One element of a parsed script: an opcode number or the bytes of a push.
ScriptOp = int | bytes


# ---------------------------------------------------------------------------
# Data push helpers
# ---------------------------------------------------------------------------


def push_data(data: bytes) -> bytes:
    """Encode a data push operation using minimal encoding rules.

    Args:
        data: Arbitrary data bytes.

    Returns:
        The opcode(s) + data for a minimal push of *data*.
    """
    length = len(data)
    if length == 0:
        return bytes([OpCode.OP_0])
    if length <= 0x4B:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OpCode.OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OpCode.OP_PUSHDATA2]) + struct.pack("<H", length) + data
    return bytes([OpCode.OP_PUSHDATA4]) + struct.pack("<I", length) + data


def push_int(n: int) -> bytes:
    """Numeric push: ``OP_0``, ``OP_1NEGATE`` and ``OP_1``..``OP_16`` as single opcodes."""
    if n == 0:
        return bytes([OpCode.OP_0])
    if n == -1:
        return bytes([OpCode.OP_1NEGATE])
    if 1 <= n <= 16:
        return bytes([OpCode.OP_1 + n - 1])
    negative = n < 0
    magnitude = abs(n)
    out = bytearray()
    while magnitude:
        out.append(magnitude & 0xFF)
        magnitude >>= 8
    if out[-1] & 0x80:
        out.append(0x80 if negative else 0x00)
    elif negative:
        out[-1] |= 0x80
    return push_data(bytes(out))


def parse_ops(raw: bytes) -> list[ScriptOp]:
    """Split a raw opcode stream into opcodes and pushed byte strings.

    ``OP_0`` is reported as the empty push ``b""``.

    Raises:
        ValueError: If a push runs past the end of the script.
    """
    ops: list[ScriptOp] = []
    stream = BytesIO(raw)
    while True:
        head = stream.read(1)
        if not head:
            return ops
        op = head[0]
        if op == OpCode.OP_0:
            ops.append(b"")
        elif op <= 0x4B:
            ops.append(read_exact(stream, op))
        elif op == OpCode.OP_PUSHDATA1:
            ops.append(read_exact(stream, read_exact(stream, 1)[0]))
        elif op == OpCode.OP_PUSHDATA2:
            ops.append(read_exact(stream, struct.unpack("<H", read_exact(stream, 2))[0]))
        elif op == OpCode.OP_PUSHDATA4:
            ops.append(read_exact(stream, struct.unpack("<I", read_exact(stream, 4))[0]))
        else:
            ops.append(op)


# ---------------------------------------------------------------------------
# Script value object
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Script:
    """An immutable script, stored as its raw opcode stream.

    Attributes:
        raw: The concatenated opcodes and pushes, without a length prefix.
    """

    raw: bytes = b""

    @classmethod
    def assemble(cls, *ops: ScriptOp | OpCode) -> Self:
        """Build a script from opcodes (ints) and pushes (bytes)."""
        out = bytearray()
        for op in ops:
            if isinstance(op, bytes | bytearray):
                out += push_data(bytes(op))
            else:
                out.append(int(op))
        return cls(bytes(out))

    @classmethod
    def from_hex(cls, hex_str: str) -> Self:
        return cls(bytes.fromhex(hex_str))

    @classmethod
    def read(cls, stream: BytesIO) -> Self:
        """Read a length-prefixed script from *stream*."""
        return cls(read_varbytes(stream))

    def serialize(self) -> bytes:
        """Length-prefix the opcode stream with a compact-size integer."""
        return encode_varbytes(self.raw)

    def ops(self) -> list[ScriptOp]:
        """Parsed opcode sequence."""
        return parse_ops(self.raw)

    def hex(self) -> str:
        return self.raw.hex()

    def __len__(self) -> int:
        return len(self.raw)

    @property
    def type(self) -> ScriptType:
        return detect_script_type(self)


# ---------------------------------------------------------------------------
# Standard scripts
# ---------------------------------------------------------------------------


def _check_hash(pubkey_hash: bytes) -> None:
    if len(pubkey_hash) != 20:
        msg = f"pubkey_hash must be 20 bytes, got {len(pubkey_hash)}"
        raise ValueError(msg)


def locking_script_for(pubkey_hash: bytes) -> Script:
    """P2WPKH locking script: ``OP_0 <20-byte hash>`` (22 bytes)."""
    _check_hash(pubkey_hash)
    return Script.assemble(OpCode.OP_0, pubkey_hash)


def p2pkh_locking_script(pubkey_hash: bytes) -> Script:
    """Legacy P2PKH locking script.

    ``OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG``
    """
    _check_hash(pubkey_hash)
    return Script.assemble(
        OpCode.OP_DUP, OpCode.OP_HASH160, pubkey_hash, OpCode.OP_EQUALVERIFY, OpCode.OP_CHECKSIG
    )


def p2sh_locking_script(script_hash: bytes) -> Script:
    """``OP_HASH160 <20 bytes> OP_EQUAL``."""
    _check_hash(script_hash)
    return Script.assemble(OpCode.OP_HASH160, script_hash, OpCode.OP_EQUAL)


def p2wpkh_script_code(pubkey_hash: bytes) -> Script:
    """BIP143 script code for a P2WPKH input (the P2PKH template)."""
    return p2pkh_locking_script(pubkey_hash)


def embed(instruction_bytes: bytes) -> Script:
    """Wrap an encoded instruction in an unspendable ``OP_RETURN`` data script."""
    return Script.assemble(OpCode.OP_RETURN, instruction_bytes)


# ---------------------------------------------------------------------------
# Script type detection
# ---------------------------------------------------------------------------


def detect_script_type(script: Script) -> ScriptType:
    """Classify a locking script."""
    raw = script.raw
    if len(raw) == 22 and raw[0] == OpCode.OP_0 and raw[1] == 0x14:
        return ScriptType.P2WPKH
    if (
        len(raw) == 25
        and raw[0] == OpCode.OP_DUP
        and raw[1] == OpCode.OP_HASH160
        and raw[2] == 0x14
        and raw[23] == OpCode.OP_EQUALVERIFY
        and raw[24] == OpCode.OP_CHECKSIG
    ):
        return ScriptType.P2PKH
    if len(raw) == 23 and raw[0] == OpCode.OP_HASH160 and raw[1] == 0x14 and raw[22] == OpCode.OP_EQUAL:
        return ScriptType.P2SH
    if raw[:1] == bytes([OpCode.OP_RETURN]):
        return ScriptType.NULL_DATA
    return ScriptType.UNKNOWN


def extract_pubkey_hash(script: Script) -> bytes | None:
    """The 20-byte hash of a P2WPKH or P2PKH script, else None."""
    kind = detect_script_type(script)
    if kind == ScriptType.P2WPKH:
        return script.raw[2:22]
    if kind == ScriptType.P2PKH:
        return script.raw[3:23]
    return None


def extract_embedded_data(script: Script) -> bytes | None:
    """Payload of an ``OP_RETURN <push>`` script, else None."""
    if detect_script_type(script) != ScriptType.NULL_DATA:
        return None
    try:
        ops = parse_ops(script.raw[1:])
    except ValueError:
        return None
    if len(ops) != 1 or not isinstance(ops[0], bytes):
        return None
    return ops[0]
