"""Tests for TransactionBuilder — selection, fees, change, signing, helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pytest

from defi_tx.builder import TransactionBuilder, estimate_fee
from defi_tx.config.settings import BuilderConfig, NetworkParams
from defi_tx.core.address import encode_address
from defi_tx.core.amount import COIN
from defi_tx.core.keys import KeyPair
from defi_tx.core.script import Script, locking_script_for, p2pkh_locking_script, p2wpkh_script_code
from defi_tx.core.transaction import SigHash, Transaction, TxOutput
from defi_tx.dftx.codec import from_script
from defi_tx.dftx.instructions import (
    CreateCfp,
    CreateMasternode,
    CreateToken,
    CreateVoc,
    Instruction,
    ProposalType,
    ScriptBalances,
    SetDefaultLoanScheme,
    TokenBalance,
    UtxosToAccount,
)
from defi_tx.errors import (
    FeeRateTooHigh,
    InsufficientFunds,
    SigningFailure,
    UnsupportedInstruction,
)
from defi_tx.providers.base import FeeRate
from defi_tx.providers.memory import KeyRingResolver, MemoryPrevoutProvider, StaticFeeRateProvider

_LOAN_SCHEME = SetDefaultLoanScheme(identifier="LOAN0001")
# vsize of one P2WPKH input + the LOAN0001 instruction output + a P2WPKH change output
_SCENARIO_VSIZE = 137
_OTHER_SCRIPT = locking_script_for(b"\x42" * 20)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _builder(
    prevouts,
    *,
    rate: int = 5_000,
    fees: StaticFeeRateProvider | None = None,
    keys=None,
    config: BuilderConfig | None = None,
) -> TransactionBuilder:
    return TransactionBuilder(
        prevouts,
        fees or StaticFeeRateProvider(rate),
        keys if keys is not None else KeyRingResolver(KeyPair((1).to_bytes(32, "big"))),
        config=config or BuilderConfig(),
    )


def _assert_signed_by(tx: Transaction, key: KeyPair, values: list[int]) -> None:
    code = p2wpkh_script_code(key.pubkey_hash)
    for index, value in enumerate(values):
        signature, pubkey = tx.witnesses[index]
        assert signature[-1] == SigHash.ALL
        assert pubkey == key.public_key
        digest = tx.signature_hash(index, code, value, SigHash.ALL)
        assert key.verify(signature[:-1], digest)


@dataclass(frozen=True)
class _Unregistered(Instruction, selector="~"):
    pass


# ---------------------------------------------------------------------------
# Instruction builds
# ---------------------------------------------------------------------------


class TestInstructionBuild:
    async def test_exact_fee_scenario(self, make_prevout, owner_script: Script, key_one: KeyPair) -> None:
        prevout = make_prevout(10 * COIN)
        provider = MemoryPrevoutProvider([prevout])
        builder = _builder(provider, rate=364_963)

        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)

        tx = result.transaction
        assert result.fee == 50_000
        assert result.change == 999_950_000
        assert len(tx.inputs) == 1
        assert len(tx.outputs) == 2
        assert tx.outputs[0].value == 0
        assert from_script(tx.outputs[0].script) == _LOAN_SCHEME
        assert tx.outputs[1].value == 999_950_000
        assert tx.outputs[1].script == owner_script
        assert tx.inputs[0].prev_tx_id_hex == prevout.txid
        assert tx.inputs[0].prev_tx_out_index == prevout.vout
        assert provider.calls == [50_000]
        _assert_signed_by(tx, key_one, [prevout.value])

    async def test_estimate_matches_signed_size(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(10 * COIN)]), rate=1_000)
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.fee == _SCENARIO_VSIZE
        assert result.transaction.vsize() <= _SCENARIO_VSIZE

    async def test_result_roundtrips(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(COIN)]))
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.transaction.is_fully_signed()
        assert Transaction.from_hex(result.to_hex()) == result.transaction
        assert result.txid == result.transaction.txid()
        assert result.transaction.version == 4

    async def test_value_is_conserved(self, make_prevout, owner_script: Script) -> None:
        prevouts = [make_prevout(COIN, index=i) for i in range(3)]
        builder = _builder(MemoryPrevoutProvider(prevouts))
        result = await builder.build(
            owner_script, outputs=[TxOutput(value=250_000_000, script=_OTHER_SCRIPT)]
        )
        spent = sum(p.value for p in result.inputs)
        paid = sum(out.value for out in result.transaction.outputs)
        assert spent == paid + result.fee
        assert len(result.inputs) == 3
        assert result.fee == estimate_fee(result.transaction, FeeRate(5_000))

    async def test_unregistered_instruction_touches_no_provider(self, make_prevout, owner_script: Script) -> None:
        prevouts = MemoryPrevoutProvider([make_prevout(COIN)])
        fees = StaticFeeRateProvider()
        builder = _builder(prevouts, fees=fees)
        with pytest.raises(UnsupportedInstruction):
            await builder.build(owner_script, instruction=_Unregistered())
        assert fees.calls == 0
        assert prevouts.calls == []

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"instruction_value": -1, "instruction": _LOAN_SCHEME},
            {"instruction_value": 5},
            {"outputs": [TxOutput(value=-1, script=_OTHER_SCRIPT)]},
            {"outputs": [TxOutput(value=1, script=_OTHER_SCRIPT, token_id=2)]},
        ],
    )
    async def test_rejects_invalid_arguments(self, owner_script: Script, kwargs) -> None:
        builder = _builder(MemoryPrevoutProvider())
        with pytest.raises(ValueError):
            await builder.build(owner_script, **kwargs)


# ---------------------------------------------------------------------------
# Fee rate
# ---------------------------------------------------------------------------


class TestFeeRate:
    async def test_fallback_when_unavailable(self, make_prevout, owner_script: Script, caplog) -> None:
        fees = StaticFeeRateProvider.unavailable("node is syncing")
        builder = _builder(MemoryPrevoutProvider([make_prevout(COIN)]), fees=fees)
        with caplog.at_level(logging.WARNING, logger="defi_tx.builder.builder"):
            result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.fee == 685
        assert "node is syncing" in caplog.text

    async def test_fallback_on_unexpected_error(self, make_prevout, owner_script: Script) -> None:
        fees = StaticFeeRateProvider(error=RuntimeError("connection reset"))
        builder = _builder(MemoryPrevoutProvider([make_prevout(COIN)]), fees=fees)
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.fee == 685

    async def test_configured_fallback(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(
            MemoryPrevoutProvider([make_prevout(COIN)]),
            fees=StaticFeeRateProvider.unavailable(),
            config=BuilderConfig(fallback_fee_rate=1_000),
        )
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.fee == _SCENARIO_VSIZE

    async def test_rate_above_ceiling(self, make_prevout, owner_script: Script) -> None:
        prevouts = MemoryPrevoutProvider([make_prevout(COIN)])
        builder = _builder(prevouts, rate=10_000_001)
        with pytest.raises(FeeRateTooHigh):
            await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert prevouts.calls == []

    async def test_rate_at_ceiling_is_accepted(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(10 * COIN)]), rate=10_000_000)
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.fee == 1_370_000


# ---------------------------------------------------------------------------
# Change
# ---------------------------------------------------------------------------


class TestChange:
    async def test_dust_change_is_folded(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(785)]))
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.change == 0
        assert result.fee == 785
        assert len(result.transaction.outputs) == 1

    async def test_exact_balance_has_no_change(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(685)]))
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.change == 0
        assert result.fee == 685
        assert len(result.transaction.outputs) == 1

    async def test_zero_dust_threshold_keeps_small_change(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(
            MemoryPrevoutProvider([make_prevout(785)]), config=BuilderConfig(dust_threshold=0)
        )
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.change == 100
        assert result.transaction.outputs[-1].value == 100

    async def test_change_is_last(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(COIN)]))
        result = await builder.build(
            owner_script,
            instruction=_LOAN_SCHEME,
            outputs=[TxOutput(value=1_000, script=_OTHER_SCRIPT)],
        )
        outputs = result.transaction.outputs
        assert [out.script for out in outputs[1:]] == [_OTHER_SCRIPT, owner_script]
        assert outputs[0].script.type == "nulldata"


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelection:
    async def test_no_outputs(self, owner_script: Script) -> None:
        keys = KeyRingResolver()
        builder = _builder(MemoryPrevoutProvider(), keys=keys)
        with pytest.raises(InsufficientFunds) as excinfo:
            await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert excinfo.value.available == 0
        assert excinfo.value.required == 685
        assert keys.resolved == []

    async def test_largest_first(self, make_prevout, owner_script: Script) -> None:
        prevouts = [make_prevout(1_000, index=0), make_prevout(COIN, index=1), make_prevout(50_000, index=2)]
        builder = _builder(MemoryPrevoutProvider(prevouts))
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.inputs == (prevouts[1],)

    async def test_exhausted_provider(self, make_prevout, owner_script: Script) -> None:
        provider = MemoryPrevoutProvider([make_prevout(300)])
        builder = _builder(provider)
        with pytest.raises(InsufficientFunds) as excinfo:
            await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert excinfo.value.available == 300
        assert len(provider.calls) == 2

    async def test_skips_token_outputs(self, make_prevout, owner_script: Script) -> None:
        token = make_prevout(10 * COIN, index=0, token_id=5)
        native = make_prevout(COIN, index=1)
        builder = _builder(MemoryPrevoutProvider([token, native]))
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.inputs == (native,)

    async def test_skips_unsupported_scripts(self, make_prevout, owner_script: Script, key_one: KeyPair) -> None:
        legacy = make_prevout(10 * COIN, index=0, script=p2pkh_locking_script(key_one.pubkey_hash))
        empty = make_prevout(0, index=1)
        native = make_prevout(COIN, index=2)
        builder = _builder(MemoryPrevoutProvider([legacy, empty, native]))
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert result.inputs == (native,)

    async def test_duplicates_selected_once(self, make_prevout, owner_script: Script) -> None:
        prevout = make_prevout(600)
        provider = MemoryPrevoutProvider([prevout, prevout, make_prevout(600, index=1)])
        builder = _builder(provider)
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert len({p.outpoint for p in result.inputs}) == len(result.inputs) == 2

    async def test_comes_back_for_more(self, make_prevout, owner_script: Script, key_one: KeyPair) -> None:
        prevouts = [make_prevout(300, index=0), make_prevout(400, index=1), make_prevout(COIN, index=2)]
        provider = MemoryPrevoutProvider(prevouts, batch_size=1)
        builder = _builder(provider)
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert len(provider.calls) == 3
        assert result.inputs == tuple(prevouts)
        _assert_signed_by(result.transaction, key_one, [p.value for p in prevouts])

    async def test_round_limit(self, make_prevout, owner_script: Script) -> None:
        prevouts = [make_prevout(300, index=0), make_prevout(400, index=1), make_prevout(COIN, index=2)]
        provider = MemoryPrevoutProvider(prevouts, batch_size=1)
        builder = _builder(provider, config=BuilderConfig(max_selection_rounds=2))
        with pytest.raises(InsufficientFunds) as excinfo:
            await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert excinfo.value.available == 700
        assert len(provider.calls) == 2


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


class _WrongKeyResolver:
    async def key_for(self, output) -> KeyPair:  # noqa: ASYNC910
        return KeyPair((2).to_bytes(32, "big"))


class TestSigning:
    async def test_missing_key(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(COIN)]), keys=KeyRingResolver())
        with pytest.raises(SigningFailure) as excinfo:
            await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert excinfo.value.input_index == 0
        assert isinstance(excinfo.value.__cause__, LookupError)

    async def test_key_does_not_match_script(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(COIN)]), keys=_WrongKeyResolver())
        with pytest.raises(SigningFailure, match="does not match"):
            await builder.build(owner_script, instruction=_LOAN_SCHEME)

    async def test_second_input_fails(self, make_prevout, owner_script: Script, key_one: KeyPair) -> None:
        stranger = KeyPair((3).to_bytes(32, "big"))
        prevouts = [
            make_prevout(600, index=0),
            make_prevout(500, index=1, script=locking_script_for(stranger.pubkey_hash)),
        ]
        builder = _builder(MemoryPrevoutProvider(prevouts), keys=KeyRingResolver(key_one))
        with pytest.raises(SigningFailure) as excinfo:
            await builder.build(owner_script, instruction=_LOAN_SCHEME)
        assert excinfo.value.input_index == 1

    async def test_multiple_keys(self, make_prevout, owner_script: Script, key_one: KeyPair) -> None:
        other = KeyPair((7).to_bytes(32, "big"))
        prevouts = [
            make_prevout(600, index=0),
            make_prevout(500, index=1, script=locking_script_for(other.pubkey_hash)),
        ]
        keys = KeyRingResolver(key_one)
        keys.add(other)
        builder = _builder(MemoryPrevoutProvider(prevouts), keys=keys, config=BuilderConfig(dust_threshold=0))
        result = await builder.build(owner_script, instruction=_LOAN_SCHEME)
        tx = result.transaction
        _assert_signed_by(tx, key_one, [600])
        assert tx.witnesses[1][1] == other.public_key
        digest = tx.signature_hash(1, p2wpkh_script_code(other.pubkey_hash), 500, SigHash.ALL)
        assert other.verify(tx.witnesses[1][0][:-1], digest)


# ---------------------------------------------------------------------------
# Category helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    async def test_send_to_address(self, make_prevout, owner_script: Script, regtest: NetworkParams) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(COIN)]))
        address = encode_address(b"\x42" * 20, regtest)
        result = await builder.send(address, 20_000, owner_script)
        outputs = result.transaction.outputs
        assert outputs[0].value == 20_000
        assert outputs[0].script == _OTHER_SCRIPT
        assert outputs[-1].script == owner_script

    async def test_send_to_script(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(COIN)]))
        result = await builder.send(_OTHER_SCRIPT, 20_000, owner_script)
        assert result.transaction.outputs[0].script == _OTHER_SCRIPT

    async def test_create_token(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(20 * COIN)]))
        result = await builder.create_token(CreateToken(symbol="GOLD", name="Gold"), owner_script)
        outputs = result.transaction.outputs
        assert outputs[0].value == COIN
        assert outputs[1].value == 10 * COIN
        assert outputs[1].script == owner_script

    async def test_create_masternode(self, make_prevout, owner_script: Script, key_one: KeyPair) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(5 * COIN)]))
        instruction = CreateMasternode(operator_type=4, operator_pub_key_hash=key_one.pubkey_hash)
        result = await builder.create_masternode(instruction, owner_script)
        outputs = result.transaction.outputs
        assert outputs[0].value == COIN
        assert outputs[1].value == 2 * COIN
        assert from_script(outputs[0].script) == instruction

    async def test_utxos_to_account(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(10 * COIN)]))
        instruction = UtxosToAccount(
            to=(
                ScriptBalances(
                    script=owner_script,
                    balances=(TokenBalance(0, 3 * COIN), TokenBalance(1, 7 * COIN)),
                ),
            )
        )
        result = await builder.utxos_to_account(instruction, owner_script)
        assert result.transaction.outputs[0].value == 3 * COIN

    @pytest.mark.parametrize(
        ("amount", "expected_fee"),
        [(100 * COIN, 10 * COIN), (5_000 * COIN, 50 * COIN)],
    )
    async def test_create_cfp(self, make_prevout, owner_script: Script, amount: int, expected_fee: int) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(100 * COIN)]))
        instruction = CreateCfp(
            proposal_type=ProposalType.COMMUNITY_FUND,
            address=owner_script,
            amount=amount,
            cycles=1,
            title="Grant",
            context="<ctx>",
        )
        result = await builder.create_cfp(instruction, owner_script)
        assert result.transaction.outputs[0].value == expected_fee

    async def test_create_voc(self, make_prevout, owner_script: Script) -> None:
        builder = _builder(MemoryPrevoutProvider([make_prevout(10 * COIN)]))
        instruction = CreateVoc(
            proposal_type=ProposalType.VOTE_OF_CONFIDENCE,
            address=Script(),
            amount=0,
            cycles=1,
            title="Confidence",
            context="<ctx>",
        )
        result = await builder.create_voc(instruction, owner_script)
        assert result.transaction.outputs[0].value == 5 * COIN
