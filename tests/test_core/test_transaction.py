"""Tests for the transaction container — core/transaction.py."""

from __future__ import annotations

import pytest

from defi_tx.core.keys import KeyPair
from defi_tx.core.script import Script, embed, locking_script_for, p2wpkh_script_code
from defi_tx.core.transaction import (
    DEFAULT_SEQUENCE,
    SigHash,
    Transaction,
    TxInput,
    TxOutput,
)
from defi_tx.errors import MalformedTransaction

# BIP143 "native P2WPKH" example: unsigned transaction, second input is P2WPKH
_BIP143_UNSIGNED = (
    "0100000002fff7f7881a8099afa6940d42d1e7f6362bec38171ea3edf433541db4e4ad969f"
    "0000000000eeffffffef51e1b804cc89d182d279655c3aa89e815b1b309fe287d9b2b55d57b9"
    "0ec68a0100000000ffffffff02202cb206000000001976a9148280b37df378db99f66f85c95a"
    "783a76ac7a6d5988ac9093510d000000001976a9143bde42dbee7e4dbe6a21b2d50ce2f0167f"
    "aa815988ac11000000"
)
_BIP143_SCRIPT_CODE = "76a9141d0f172a0ecb48aee1be1f2687d2963ae33f71a188ac"
_BIP143_SIGHASH = "c37af31116d1b27caf68aae9e3ac82f1477929014d5b917657d0eb49478cb670"


def _txid(n: int) -> str:
    return f"{n:064x}"


def _sample_tx() -> Transaction:
    tx = Transaction()
    tx.inputs.append(TxInput.from_txid(_txid(1), 0))
    tx.inputs.append(TxInput.from_txid(_txid(2), 3, sequence=0xFFFFFFFE))
    tx.clear_witnesses()
    tx.add_output(0, embed(b"DfTx" + b"d" + b"\x04TEST"))
    tx.add_output(150_000, locking_script_for(bytes(20)), token_id=0)
    tx.add_output(7, locking_script_for(b"\x01" * 20), token_id=300)
    return tx


class TestTxInput:
    def test_from_txid_reverses(self) -> None:
        inp = TxInput.from_txid("ab" + "00" * 31, 1)
        assert inp.prev_tx_id == b"\x00" * 31 + b"\xab"
        assert inp.prev_tx_id_hex == "ab" + "00" * 31
        assert inp.sequence == DEFAULT_SEQUENCE

    def test_serialize_layout(self) -> None:
        inp = TxInput(prev_tx_id=b"\x11" * 32, prev_tx_out_index=2)
        raw = inp.serialize()
        assert raw == b"\x11" * 32 + b"\x02\x00\x00\x00" + b"\x00" + b"\xff\xff\xff\xff"


class TestTxOutput:
    def test_token_id_written_from_version_4(self) -> None:
        out = TxOutput(value=1, script=Script(b"\x51"), token_id=5)
        assert out.serialize(4).hex() == "0100000000000000" + "0151" + "05"
        assert out.serialize(2).hex() == "0100000000000000" + "0151"


class TestSerialization:
    def test_bip143_vector_roundtrip(self) -> None:
        tx = Transaction.from_hex(_BIP143_UNSIGNED)
        assert tx.version == 1
        assert len(tx.inputs) == 2
        assert tx.inputs[0].sequence == 0xFFFFFFEE
        assert tx.outputs[0].value == 112_340_000
        assert tx.locktime == 17
        assert tx.to_hex() == _BIP143_UNSIGNED

    def test_unsigned_roundtrip(self) -> None:
        tx = _sample_tx()
        assert Transaction.from_bytes(tx.serialize()) == tx

    def test_signed_roundtrip(self) -> None:
        tx = _sample_tx()
        tx.set_witness(0, [b"\x30" * 71, b"\x02" * 33])
        tx.set_witness(1, [b"\x31" * 72, b"\x03" * 33])
        raw = tx.serialize()
        assert raw[4:6] == b"\x00\x01"
        assert Transaction.from_bytes(raw) == tx

    def test_zero_inputs_zero_outputs(self) -> None:
        tx = Transaction()
        raw = tx.serialize()
        assert raw.hex() == "04000000" + "0001" + "00" + "00" + "00000000"
        assert Transaction.from_bytes(raw) == tx

    def test_zero_inputs_with_outputs(self) -> None:
        tx = Transaction(outputs=[TxOutput(value=5, script=Script(b"\x6a"))])
        assert Transaction.from_bytes(tx.serialize()) == tx

    def test_witness_alignment(self) -> None:
        tx = Transaction(inputs=[TxInput.from_txid(_txid(1), 0)])
        assert tx.witnesses == [[]]
        with pytest.raises(ValueError, match="witness stacks"):
            Transaction(witnesses=[[b"x"]])

    def test_trailing_bytes(self) -> None:
        raw = _sample_tx().serialize() + b"\x00"
        with pytest.raises(MalformedTransaction, match="trailing"):
            Transaction.from_bytes(raw)

    def test_truncated(self) -> None:
        raw = _sample_tx().serialize()[:-3]
        with pytest.raises(MalformedTransaction):
            Transaction.from_bytes(raw)

    def test_unknown_flag(self) -> None:
        with pytest.raises(MalformedTransaction, match="flag"):
            Transaction.from_hex("04000000" + "0002" + "00" + "00" + "00000000")

    def test_superfluous_witness(self) -> None:
        tx = _sample_tx()
        legacy = tx.serialize()
        extended = legacy[:4] + b"\x00\x01" + legacy[4:-4] + b"\x00\x00" + legacy[-4:]
        with pytest.raises(MalformedTransaction, match="Superfluous"):
            Transaction.from_bytes(extended)


class TestIdentifiers:
    def test_equal_without_witness(self) -> None:
        tx = _sample_tx()
        assert tx.txid() == tx.witness_txid()

    def test_differ_with_witness(self) -> None:
        tx = _sample_tx()
        unsigned_txid = tx.txid()
        tx.set_witness(0, [b"\x01"])
        tx.set_witness(1, [b"\x02"])
        assert tx.txid() == unsigned_txid
        assert tx.witness_txid() != tx.txid()

    def test_txid_is_reversed_digest(self) -> None:
        tx = _sample_tx()
        assert bytes.fromhex(tx.txid()) == tx.txid_bytes()[::-1]


class TestSize:
    def test_weight_without_witness(self) -> None:
        tx = _sample_tx()
        assert tx.weight() == tx.size * 4
        assert tx.vsize() == tx.size

    def test_vsize_discounts_witness(self) -> None:
        tx = _sample_tx()
        base = tx.size
        tx.set_witness(0, [b"\x00" * 73, b"\x00" * 33])
        tx.set_witness(1, [b"\x00" * 73, b"\x00" * 33])
        witness_bytes = 2 + 2 * (1 + 74 + 34)
        assert tx.size == base + witness_bytes
        assert tx.weight() == base * 4 + witness_bytes
        assert tx.vsize() == -(-(base * 4 + witness_bytes) // 4)


class TestSignatureHash:
    def test_bip143_native_p2wpkh(self) -> None:
        tx = Transaction.from_hex(_BIP143_UNSIGNED)
        digest = tx.signature_hash(1, Script.from_hex(_BIP143_SCRIPT_CODE), 600_000_000, SigHash.ALL)
        assert digest.hex() == _BIP143_SIGHASH

    def test_commits_to_value(self) -> None:
        tx = _sample_tx()
        code = p2wpkh_script_code(bytes(20))
        assert tx.signature_hash(0, code, 100) != tx.signature_hash(0, code, 101)

    def test_commits_to_token_ids(self) -> None:
        tx = _sample_tx()
        code = p2wpkh_script_code(bytes(20))
        before = tx.signature_hash(0, code, 100)
        tx.outputs[2].token_id = 301
        assert tx.signature_hash(0, code, 100) != before

    @pytest.mark.parametrize(
        "sighash",
        [
            SigHash.ALL,
            SigHash.NONE,
            SigHash.SINGLE,
            SigHash.ALL | SigHash.ANYONECANPAY,
            SigHash.NONE | SigHash.ANYONECANPAY,
            SigHash.SINGLE | SigHash.ANYONECANPAY,
        ],
    )
    def test_sign_and_verify(self, key_one: KeyPair, sighash: int) -> None:
        tx = _sample_tx()
        code = p2wpkh_script_code(key_one.pubkey_hash)
        digest = tx.signature_hash(1, code, 50_000, sighash)
        assert key_one.verify(key_one.sign(digest), digest)

    def test_types_produce_distinct_digests(self) -> None:
        tx = _sample_tx()
        code = p2wpkh_script_code(bytes(20))
        digests = {tx.signature_hash(0, code, 1, t) for t in (SigHash.ALL, SigHash.NONE, SigHash.SINGLE)}
        assert len(digests) == 3

    def test_anyonecanpay_ignores_other_inputs(self) -> None:
        tx = _sample_tx()
        code = p2wpkh_script_code(bytes(20))
        flag = SigHash.ALL | SigHash.ANYONECANPAY
        before = tx.signature_hash(0, code, 1, flag)
        tx.inputs[1].sequence = 0
        assert tx.signature_hash(0, code, 1, flag) == before
        assert tx.signature_hash(0, code, 1, SigHash.ALL) != tx.signature_hash(0, code, 1, flag)

    def test_index_out_of_range(self) -> None:
        with pytest.raises(IndexError):
            _sample_tx().signature_hash(5, Script(), 0)
