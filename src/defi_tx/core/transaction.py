"""Transaction container — segwit serialization, ids, BIP143 signature hashes.

Provides the binary layout of a full transaction:
- TxInput / TxOutput data classes (outputs carry a token id from version 4)
- Transaction with serialize / deserialize, txid and witness txid
- Weight / virtual size for fee estimation
- BIP143 signature hash preimages for witness v0 inputs
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from io import BytesIO

from defi_tx.core.buffer import (
    encode_varbytes,
    encode_varint,
    ensure_consumed,
    read_exact,
    read_struct,
    read_varbytes,
    read_varint,
)
from defi_tx.core.script import Script
from defi_tx.errors import MalformedTransaction
from defi_tx.utils.crypto import sha256d

# Default sequence: 0xFFFFFFFF (final, no RBF)
DEFAULT_SEQUENCE = 0xFFFFFFFF

# Outputs carry a compact-size token id from this version on
TOKEN_OUTPUT_VERSION = 4

_SEGWIT_MARKER = 0x00
_SEGWIT_FLAG = 0x01
_ZERO_HASH = b"\x00" * 32

#: Witness stack of one input: ordered byte-string items.
Witness = list[bytes]


class SigHash(enum.IntFlag):
    """Signature hash types (BIP143 semantics)."""

    ALL = 0x01
    NONE = 0x02
    SINGLE = 0x03
    ANYONECANPAY = 0x80


# ---------------------------------------------------------------------------
# TxInput
# ---------------------------------------------------------------------------


@dataclass
class TxInput:
    """A transaction input.

    Attributes:
        prev_tx_id: 32-byte hash of the previous transaction (internal byte order).
        prev_tx_out_index: Index of the output in the previous transaction.
        script_sig: Unlocking script; empty for witness inputs.
        sequence: Sequence number (default 0xFFFFFFFF).
    """

    prev_tx_id: bytes
    prev_tx_out_index: int
    script_sig: bytes = b""
    sequence: int = DEFAULT_SEQUENCE

    @classmethod
    def from_txid(cls, txid: str, vout: int, *, sequence: int = DEFAULT_SEQUENCE) -> TxInput:
        """Build an input from a display-order hex txid."""
        prev_tx_id = bytes.fromhex(txid)[::-1]
        if len(prev_tx_id) != 32:
            msg = f"txid must be 32 bytes, got {len(prev_tx_id)}"
            raise ValueError(msg)
        return cls(prev_tx_id=prev_tx_id, prev_tx_out_index=vout, sequence=sequence)

    @property
    def prev_tx_id_hex(self) -> str:
        """Previous transaction ID in display (reversed) hex."""
        return self.prev_tx_id[::-1].hex()

    def outpoint(self) -> bytes:
        """Serialized (txid, index) reference."""
        return self.prev_tx_id + struct.pack("<I", self.prev_tx_out_index)

    def serialize(self) -> bytes:
        """Serialize the input to bytes."""
        result = self.outpoint()
        result += encode_varbytes(self.script_sig)
        result += struct.pack("<I", self.sequence)
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxInput:
        """Deserialize a transaction input from a byte stream."""
        prev_tx_id = read_exact(stream, 32)
        prev_tx_out_index = read_struct(stream, "<I")
        script_sig = read_varbytes(stream)
        sequence = read_struct(stream, "<I")
        return cls(
            prev_tx_id=prev_tx_id,
            prev_tx_out_index=prev_tx_out_index,
            script_sig=script_sig,
            sequence=sequence,
        )


# ---------------------------------------------------------------------------
# TxOutput
# ---------------------------------------------------------------------------


@dataclass
class TxOutput:
    """A transaction output.

    Attributes:
        value: Output value in minor units.
        script: Locking script.
        token_id: Token carried by the output (0 is the native coin).
    """

    value: int
    script: Script
    token_id: int = 0

    def serialize(self, version: int = TOKEN_OUTPUT_VERSION) -> bytes:
        """Serialize the output; the token id is written only for ``version >= 4``."""
        result = struct.pack("<q", self.value)
        result += self.script.serialize()
        if version >= TOKEN_OUTPUT_VERSION:
            result += encode_varint(self.token_id)
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO, version: int = TOKEN_OUTPUT_VERSION) -> TxOutput:
        """Deserialize a transaction output from a byte stream."""
        value = read_struct(stream, "<q")
        script = Script.read(stream)
        token_id = read_varint(stream) if version >= TOKEN_OUTPUT_VERSION else 0
        return cls(value=value, script=script, token_id=token_id)


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


@dataclass
class Transaction:
    """A segwit-capable transaction.

    ``witnesses`` is kept index-aligned with ``inputs``; an unsigned
    transaction holds one empty stack per input.

    Attributes:
        version: Transaction version (default 4).
        inputs: List of transaction inputs.
        outputs: List of transaction outputs.
        witnesses: One witness stack per input.
        locktime: Transaction locktime (default 0).
    """

    version: int = TOKEN_OUTPUT_VERSION
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    witnesses: list[Witness] = field(default_factory=list)
    locktime: int = 0

    def __post_init__(self) -> None:
        if len(self.witnesses) > len(self.inputs):
            msg = f"{len(self.witnesses)} witness stacks for {len(self.inputs)} inputs"
            raise ValueError(msg)
        self.witnesses = [list(w) for w in self.witnesses]
        self.witnesses.extend([] for _ in range(len(self.inputs) - len(self.witnesses)))

    # -- Witness state ---------------------------------------------------

    def has_witness(self) -> bool:
        """True if any input carries witness data."""
        return any(self.witnesses)

    def is_fully_signed(self) -> bool:
        """True if every input has a non-empty witness stack."""
        return bool(self.inputs) and all(self.witnesses)

    def set_witness(self, index: int, witness: Witness) -> None:
        """Attach *witness* to the input at *index*."""
        if not 0 <= index < len(self.inputs):
            msg = f"input index {index} out of range"
            raise IndexError(msg)
        self.witnesses[index] = list(witness)

    def clear_witnesses(self) -> None:
        self.witnesses = [[] for _ in self.inputs]

    # -- Serialization ---------------------------------------------------

    def serialize(self, *, include_witness: bool = True) -> bytes:
        """Serialize the transaction to raw bytes.

        The segregated layout (marker, flag, per-input witness stacks) is
        used when any witness is non-empty. A transaction without inputs is
        always written in that layout so the empty input list cannot be
        mistaken for the segwit marker on the way back in.
        """
        extended = include_witness and (self.has_witness() or not self.inputs)
        result = struct.pack("<i", self.version)
        if extended:
            result += bytes([_SEGWIT_MARKER, _SEGWIT_FLAG])
        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()
        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize(self.version)
        if extended:
            for witness in self.witnesses:
                result += encode_varint(len(witness))
                for item in witness:
                    result += encode_varbytes(item)
        result += struct.pack("<I", self.locktime)
        return result

    def to_hex(self) -> str:
        """Serialize to hex string."""
        return self.serialize().hex()

    @classmethod
    def deserialize(cls, stream: BytesIO) -> Transaction:
        """Deserialize a transaction from a byte stream.

        Raises:
            MalformedTransaction: On truncated or structurally invalid data.
        """
        try:
            return cls._deserialize(stream)
        except (ValueError, struct.error) as exc:
            raise MalformedTransaction(str(exc)) from exc

    @classmethod
    def _deserialize(cls, stream: BytesIO) -> Transaction:
        version = read_struct(stream, "<i")
        n_inputs = read_varint(stream)
        extended = False
        if n_inputs == _SEGWIT_MARKER:
            flag = read_exact(stream, 1)[0]
            if flag != _SEGWIT_FLAG:
                msg = f"Unknown transaction flag: {flag:#04x}"
                raise ValueError(msg)
            extended = True
            n_inputs = read_varint(stream)
        inputs = [TxInput.deserialize(stream) for _ in range(n_inputs)]
        n_outputs = read_varint(stream)
        outputs = [TxOutput.deserialize(stream, version) for _ in range(n_outputs)]
        witnesses: list[Witness] = []
        if extended:
            for _ in range(n_inputs):
                n_items = read_varint(stream)
                witnesses.append([read_varbytes(stream) for _ in range(n_items)])
            if inputs and not any(witnesses):
                msg = "Superfluous witness record"
                raise ValueError(msg)
        locktime = read_struct(stream, "<I")
        return cls(
            version=version,
            inputs=inputs,
            outputs=outputs,
            witnesses=witnesses,
            locktime=locktime,
        )

    @classmethod
    def from_hex(cls, hex_str: str) -> Transaction:
        """Deserialize a transaction from a hex string."""
        return cls.from_bytes(bytes.fromhex(hex_str))

    @classmethod
    def from_bytes(cls, data: bytes) -> Transaction:
        """Deserialize a transaction, rejecting trailing bytes."""
        stream = BytesIO(data)
        tx = cls.deserialize(stream)
        try:
            ensure_consumed(stream)
        except ValueError as exc:
            raise MalformedTransaction(str(exc)) from exc
        return tx

    # -- Identifiers -----------------------------------------------------

    def txid_bytes(self) -> bytes:
        """Double-SHA256 of the non-witness serialization (internal byte order)."""
        return sha256d(self.serialize(include_witness=False))

    def txid(self) -> str:
        """The transaction ID in display (reversed) hex."""
        return self.txid_bytes()[::-1].hex()

    def witness_txid_bytes(self) -> bytes:
        """Double-SHA256 including witnesses; equals the txid when no witness data exists."""
        if not self.has_witness():
            return self.txid_bytes()
        return sha256d(self.serialize())

    def witness_txid(self) -> str:
        """The witness transaction ID in display (reversed) hex."""
        return self.witness_txid_bytes()[::-1].hex()

    # -- Size ------------------------------------------------------------

    @property
    def size(self) -> int:
        """Transaction size in bytes."""
        return len(self.serialize())

    def weight(self) -> int:
        """BIP141 weight: base size * 3 + total size."""
        base = len(self.serialize(include_witness=False))
        total = len(self.serialize()) if self.has_witness() else base
        return base * 3 + total

    def vsize(self) -> int:
        """Virtual size, ``ceil(weight / 4)``."""
        return (self.weight() + 3) // 4

    # -- Building --------------------------------------------------------

    def add_input(
        self,
        prev_tx_id: bytes,
        prev_tx_out_index: int,
        sequence: int = DEFAULT_SEQUENCE,
    ) -> TxInput:
        """Add an input (with an empty witness stack) to the transaction.

        Returns:
            The newly created :class:`TxInput`.
        """
        inp = TxInput(prev_tx_id=prev_tx_id, prev_tx_out_index=prev_tx_out_index, sequence=sequence)
        self.inputs.append(inp)
        self.witnesses.append([])
        return inp

    def add_output(self, value: int, script: Script, token_id: int = 0) -> TxOutput:
        """Add an output to the transaction.

        Returns:
            The newly created :class:`TxOutput`.
        """
        out = TxOutput(value=value, script=script, token_id=token_id)
        self.outputs.append(out)
        return out

    # -- Signature hash --------------------------------------------------

    def signature_hash(
        self,
        input_index: int,
        script_code: Script,
        value: int,
        sighash_type: int = SigHash.ALL,
    ) -> bytes:
        """BIP143 message digest for a witness v0 input.

        Args:
            input_index: Input being signed.
            script_code: Script substituted for the spent output's script
                (the P2PKH template for P2WPKH).
            value: Value of the spent output, committed to by the digest.
            sighash_type: Hash type byte, appended to the preimage as 4 bytes.

        Returns:
            The 32-byte double-SHA256 digest to sign.
        """
        if not 0 <= input_index < len(self.inputs):
            msg = f"input index {input_index} out of range"
            raise IndexError(msg)
        anyone_can_pay = bool(sighash_type & SigHash.ANYONECANPAY)
        base_type = sighash_type & 0x1F

        hash_prevouts = _ZERO_HASH
        if not anyone_can_pay:
            hash_prevouts = sha256d(b"".join(inp.outpoint() for inp in self.inputs))

        hash_sequence = _ZERO_HASH
        if not anyone_can_pay and base_type not in (SigHash.SINGLE, SigHash.NONE):
            hash_sequence = sha256d(b"".join(struct.pack("<I", inp.sequence) for inp in self.inputs))

        if base_type not in (SigHash.SINGLE, SigHash.NONE):
            hash_outputs = sha256d(b"".join(out.serialize(self.version) for out in self.outputs))
        elif base_type == SigHash.SINGLE and input_index < len(self.outputs):
            hash_outputs = sha256d(self.outputs[input_index].serialize(self.version))
        else:
            hash_outputs = _ZERO_HASH

        inp = self.inputs[input_index]
        preimage = struct.pack("<i", self.version)
        preimage += hash_prevouts
        preimage += hash_sequence
        preimage += inp.outpoint()
        preimage += script_code.serialize()
        preimage += struct.pack("<q", value)
        preimage += struct.pack("<I", inp.sequence)
        preimage += hash_outputs
        preimage += struct.pack("<I", self.locktime)
        preimage += struct.pack("<I", sighash_type)
        return sha256d(preimage)
