"""Encode and decode instruction payloads.

Payload layout::

    "DfTx" (44 66 54 78) | selector (1 byte) | fields of the selected kind

The selector registry is built once at import time from
:data:`~defi_tx.dftx.instructions.ALL_INSTRUCTIONS` and is read-only.
"""

from __future__ import annotations

import logging
import struct
from io import BytesIO
from types import MappingProxyType

from defi_tx.core.buffer import ensure_consumed, read_exact
from defi_tx.core.script import Script, embed, extract_embedded_data
from defi_tx.dftx.fields import decode_record, encode_record
from defi_tx.dftx.instructions import ALL_INSTRUCTIONS, Instruction
from defi_tx.errors import MalformedInstruction, UnsupportedInstruction

logger = logging.getLogger(__name__)

MAGIC = b"DfTx"


def _build_registry() -> MappingProxyType[int, type[Instruction]]:
    registry: dict[int, type[Instruction]] = {}
    for kind in ALL_INSTRUCTIONS:
        if kind.SELECTOR is None:
            msg = f"{kind.__name__} has no selector"
            raise TypeError(msg)
        if kind.SELECTOR in registry:
            msg = f"Duplicate selector {chr(kind.SELECTOR)!r}: {registry[kind.SELECTOR].__name__}, {kind.__name__}"
            raise TypeError(msg)
        registry[kind.SELECTOR] = kind
    return MappingProxyType(registry)


REGISTRY = _build_registry()


def lookup(selector: int | str) -> type[Instruction]:
    """Return the instruction kind registered for *selector*.

    Raises:
        UnsupportedInstruction: No kind uses this selector.
    """
    code = ord(selector) if isinstance(selector, str) else selector
    try:
        return REGISTRY[code]
    except KeyError:
        msg = f"Unsupported instruction selector {code:#04x}"
        raise UnsupportedInstruction(msg, selector=code) from None


# ---------------------------------------------------------------------------
# Encode / decode
# ---------------------------------------------------------------------------


def encode(instruction: Instruction) -> bytes:
    """Serialize *instruction* to its payload bytes, marker included.

    Raises:
        UnsupportedInstruction: The instruction's type is not a registered kind.
        MalformedInstruction: A field value cannot be represented on the wire.
    """
    kind = type(instruction)
    if kind.SELECTOR is None or REGISTRY.get(kind.SELECTOR) is not kind:
        msg = f"{kind.__name__} is not a registered instruction kind"
        raise UnsupportedInstruction(msg, selector=kind.SELECTOR)
    try:
        body = encode_record(instruction)
    except (TypeError, ValueError, OverflowError, struct.error) as exc:
        msg = f"Cannot encode {kind.__name__}: {exc}"
        raise MalformedInstruction(msg) from exc
    return MAGIC + bytes([kind.SELECTOR]) + body


def decode(payload: bytes) -> Instruction:
    """Parse payload bytes back into an instruction.

    Raises:
        MalformedInstruction: Missing marker, truncated fields or trailing bytes.
        UnsupportedInstruction: The selector is not registered.
    """
    stream = BytesIO(payload)
    try:
        marker = read_exact(stream, len(MAGIC))
        selector = read_exact(stream, 1)[0]
    except ValueError as exc:
        msg = f"Payload too short for an instruction header: {len(payload)} bytes"
        raise MalformedInstruction(msg) from exc
    if marker != MAGIC:
        msg = f"Missing instruction marker, got {marker.hex()}"
        raise MalformedInstruction(msg)

    kind = lookup(selector)
    try:
        instruction = decode_record(kind, stream)
        ensure_consumed(stream)
    except (ValueError, UnicodeDecodeError, struct.error) as exc:
        msg = f"Malformed {kind.__name__} payload: {exc}"
        raise MalformedInstruction(msg) from exc
    logger.debug("Decoded %s (%d bytes)", kind.__name__, len(payload))
    return instruction


def to_script(instruction: Instruction) -> Script:
    """Encode *instruction* and wrap it in an ``OP_RETURN`` script."""
    return embed(encode(instruction))


def from_script(script: Script) -> Instruction:
    """Decode the instruction embedded in an ``OP_RETURN`` script.

    Raises:
        MalformedInstruction: The script does not carry a single data push.
    """
    payload = extract_embedded_data(script)
    if payload is None:
        msg = "Script does not carry embedded instruction data"
        raise MalformedInstruction(msg)
    return decode(payload)
