"""Transaction builder — select inputs, assemble outputs, sign every input.

One :meth:`TransactionBuilder.build` call runs a fixed pipeline:

1. Encode the instruction (if any) into a ``OP_RETURN`` output.
2. Obtain a fee rate (falling back to ``fallback_fee_rate``).
3. Select spendable outputs until they cover outputs + fee, re-estimating
   the fee as inputs are added.
4. Lay out outputs: instruction, transfers, then change (dropped if dust).
5. Sign every input with BIP143 and attach ``[signature, pubkey]`` witnesses.

The result is either a fully signed transaction or an exception; partial
state never escapes. Builds do not reserve outputs, so callers sharing a
wallet between concurrent builds must serialize them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from defi_tx.builder.fee import estimate_fee
from defi_tx.config.settings import BuilderConfig
from defi_tx.core.address import address_to_script
from defi_tx.core.script import ScriptType, extract_pubkey_hash, p2wpkh_script_code
from defi_tx.core.transaction import SigHash, Transaction, TxInput, TxOutput
from defi_tx.dftx.codec import to_script
from defi_tx.errors import FeeRateTooHigh, InsufficientFunds, SigningFailure, TxnError
from defi_tx.providers.base import FeeRate, SpendableOutput

if TYPE_CHECKING:
    from collections.abc import Sequence

    from defi_tx.config.settings import NetworkParams
    from defi_tx.core.script import Script
    from defi_tx.dftx.instructions import (
        CreateCfp,
        CreateMasternode,
        CreateToken,
        CreateVoc,
        Instruction,
        UtxosToAccount,
    )
    from defi_tx.providers.base import FeeRateProvider, PrevoutProvider, SigningKeyResolver

logger = logging.getLogger(__name__)

_PLACEHOLDER_INPUT = TxInput(prev_tx_id=bytes(32), prev_tx_out_index=0)


@dataclass(frozen=True)
class BuildResult:
    """A signed transaction and how it was funded.

    Attributes:
        transaction: The fully signed transaction.
        fee: Fee paid, ``sum(inputs) - sum(outputs)``.
        inputs: Spent outputs, in input order.
        change: Value of the change output, 0 if none was added.
    """

    transaction: Transaction
    fee: int
    inputs: tuple[SpendableOutput, ...]
    change: int = 0

    @property
    def txid(self) -> str:
        return self.transaction.txid()

    def to_hex(self) -> str:
        return self.transaction.to_hex()


class TransactionBuilder:
    """Builds signed transactions from provider-supplied outputs and keys.

    Usage::

        builder = TransactionBuilder(prevouts, fees, keys, config=BuilderConfig())
        result = await builder.build(change_script, instruction=SetDefaultLoanScheme("LOAN1"))
        await rpc.send_transaction(result.transaction)
    """

    def __init__(
        self,
        prevouts: PrevoutProvider,
        fees: FeeRateProvider,
        keys: SigningKeyResolver,
        *,
        config: BuilderConfig | None = None,
        network: NetworkParams | None = None,
    ) -> None:
        """Initialize the builder.

        Args:
            prevouts: Source of spendable outputs.
            fees: Source of fee rates.
            keys: Resolves the signing key of each selected output.
            config: Builder policy; defaults to ``BuilderConfig()``.
            network: Network parameters; defaults to ``config.network_params()``.
        """
        self._prevouts = prevouts
        self._fees = fees
        self._keys = keys
        self._config = config or BuilderConfig()
        self._network = network or self._config.network_params()

    @property
    def network(self) -> NetworkParams:
        return self._network

    @property
    def config(self) -> BuilderConfig:
        return self._config

    # ------------------------------------------------------------------
    # Generic build
    # ------------------------------------------------------------------

    async def build(
        self,
        change_script: Script,
        *,
        instruction: Instruction | None = None,
        instruction_value: int = 0,
        outputs: Sequence[TxOutput] = (),
    ) -> BuildResult:
        """Fund, assemble and sign one transaction.

        Args:
            change_script: Receives the remainder above outputs + fee.
            instruction: Embedded in the first output when given.
            instruction_value: Value burned with the instruction output.
            outputs: Transfer outputs, placed after the instruction output.

        Raises:
            UnsupportedInstruction: *instruction* is not a registered kind.
            FeeRateTooHigh: The provider's rate exceeds ``max_fee_rate``.
            InsufficientFunds: The spendable outputs cannot cover the build.
            SigningFailure: A key could not be resolved or an input not signed.
        """
        if instruction_value < 0 or any(out.value < 0 for out in outputs):
            msg = "output values must be non-negative"
            raise ValueError(msg)
        if any(out.token_id for out in outputs):
            msg = "transfer outputs must carry the native coin"
            raise ValueError(msg)

        fixed: list[TxOutput] = []
        if instruction is not None:
            fixed.append(TxOutput(value=instruction_value, script=to_script(instruction)))
        elif instruction_value:
            msg = "instruction_value given without an instruction"
            raise ValueError(msg)
        fixed.extend(outputs)
        required = sum(out.value for out in fixed)

        rate = await self._fee_rate()
        selected, fee = await self._select(fixed, change_script, required, rate)

        tx = Transaction(
            version=self._config.transaction_version,
            inputs=[
                TxInput.from_txid(p.txid, p.vout, sequence=self._config.sequence) for p in selected
            ],
            outputs=list(fixed),
        )

        change = sum(p.value for p in selected) - required - fee
        if change >= self._config.dust_threshold and change > 0:
            tx.add_output(change, change_script)
        else:
            logger.debug("Folding %d minor units of change into the fee", change)
            fee += change
            change = 0

        await self._sign(tx, selected)
        logger.info(
            "Built %s: %d inputs, %d outputs, fee %d",
            tx.txid(),
            len(tx.inputs),
            len(tx.outputs),
            fee,
        )
        return BuildResult(transaction=tx, fee=fee, inputs=tuple(selected), change=change)

    # ------------------------------------------------------------------
    # Category helpers
    # ------------------------------------------------------------------

    async def send(self, to: Script | str, amount: int, change_script: Script) -> BuildResult:
        """Plain transfer of *amount* to a script or address."""
        script = address_to_script(to, self._network) if isinstance(to, str) else to
        return await self.build(change_script, outputs=[TxOutput(value=amount, script=script)])

    async def create_token(self, instruction: CreateToken, owner_script: Script) -> BuildResult:
        """Burn the token creation fee and lock the collateral to the owner."""
        return await self.build(
            owner_script,
            instruction=instruction,
            instruction_value=self._network.token_creation_fee,
            outputs=[TxOutput(value=self._network.token_collateral, script=owner_script)],
        )

    async def create_masternode(self, instruction: CreateMasternode, owner_script: Script) -> BuildResult:
        """Burn the masternode creation fee and lock the collateral to the owner."""
        return await self.build(
            owner_script,
            instruction=instruction,
            instruction_value=self._network.masternode_creation_fee,
            outputs=[TxOutput(value=self._network.masternode_collateral, script=owner_script)],
        )

    async def utxos_to_account(self, instruction: UtxosToAccount, change_script: Script) -> BuildResult:
        """Move coins into account balances; the instruction output carries the total."""
        amount = sum(
            balance.amount
            for account in instruction.to
            for balance in account.balances
            if balance.token == 0
        )
        return await self.build(change_script, instruction=instruction, instruction_value=amount)

    async def create_cfp(self, instruction: CreateCfp, change_script: Script) -> BuildResult:
        """Community fund proposal; pays ``max(amount * ratio, min fee)``."""
        fee = instruction.amount * self._network.cfp_fee_ratio_ppm // 1_000_000
        fee = max(fee, self._network.cfp_min_fee)
        return await self.build(change_script, instruction=instruction, instruction_value=fee)

    async def create_voc(self, instruction: CreateVoc, change_script: Script) -> BuildResult:
        """Vote of confidence; pays the network's fixed proposal fee."""
        return await self.build(
            change_script, instruction=instruction, instruction_value=self._network.voc_fee
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _fee_rate(self) -> FeeRate:
        fallback = self._config.fallback_fee_rate
        try:
            rate = await self._fees.estimate()
        except Exception as exc:  # noqa: BLE001
            reason = exc.message if isinstance(exc, TxnError) else str(exc)
            logger.warning("Fee estimation failed (%s); using fallback rate %d", reason, fallback)
            return FeeRate(fallback)
        if rate.per_kb > self._config.max_fee_rate:
            msg = f"Fee rate {rate.per_kb} exceeds maximum {self._config.max_fee_rate}"
            raise FeeRateTooHigh(msg)
        return rate

    def _estimate(self, n_inputs: int, outputs: list[TxOutput], change_script: Script, rate: FeeRate) -> int:
        candidate = Transaction(
            version=self._config.transaction_version,
            inputs=[_PLACEHOLDER_INPUT] * max(n_inputs, 1),
            outputs=[*outputs, TxOutput(value=0, script=change_script)],
        )
        return estimate_fee(candidate, rate)

    async def _select(
        self,
        outputs: list[TxOutput],
        change_script: Script,
        required: int,
        rate: FeeRate,
    ) -> tuple[list[SpendableOutput], int]:
        """Pick inputs covering *required* plus the fee for the inputs picked."""
        selected: list[SpendableOutput] = []
        pool: list[SpendableOutput] = []
        seen: set[tuple[str, int]] = set()
        total = 0
        rounds = 0
        fee = self._estimate(1, outputs, change_script, rate)

        while not selected or total < required + fee:
            if not pool:
                if rounds >= self._config.max_selection_rounds:
                    msg = f"Gave up after {rounds} selection rounds"
                    raise InsufficientFunds(msg, required=required + fee, available=total)
                rounds += 1
                candidates = await self._prevouts.collect(required + fee)
                fresh: list[SpendableOutput] = []
                for candidate in candidates:
                    if candidate.outpoint in seen:
                        continue
                    seen.add(candidate.outpoint)
                    if _is_fundable(candidate):
                        fresh.append(candidate)
                logger.debug(
                    "Selection round %d: %d candidates, %d usable, need %d have %d",
                    rounds,
                    len(candidates),
                    len(fresh),
                    required + fee,
                    total,
                )
                if not fresh:
                    msg = f"Insufficient funds: need {required + fee}, have {total}"
                    raise InsufficientFunds(msg, required=required + fee, available=total)
                pool = sorted(fresh, key=lambda c: c.value, reverse=True)
            prevout = pool.pop(0)
            selected.append(prevout)
            total += prevout.value
            fee = self._estimate(len(selected), outputs, change_script, rate)
        return selected, fee

    async def _sign(self, tx: Transaction, selected: list[SpendableOutput]) -> None:
        witnesses = await asyncio.gather(
            *(self._sign_input(tx, index, prevout) for index, prevout in enumerate(selected))
        )
        for index, witness in enumerate(witnesses):
            tx.set_witness(index, witness)

    async def _sign_input(self, tx: Transaction, index: int, prevout: SpendableOutput) -> list[bytes]:
        try:
            key = await self._keys.key_for(prevout)
        except Exception as exc:
            msg = f"No signing key for input {index} ({prevout.txid}:{prevout.vout}): {exc}"
            raise SigningFailure(msg, input_index=index) from exc

        if extract_pubkey_hash(prevout.script) != key.pubkey_hash:
            msg = f"Key for input {index} does not match its locking script"
            raise SigningFailure(msg, input_index=index)
        try:
            digest = tx.signature_hash(index, p2wpkh_script_code(key.pubkey_hash), prevout.value, SigHash.ALL)
            signature = key.sign(digest)
        except Exception as exc:
            msg = f"Signing input {index} failed: {exc}"
            raise SigningFailure(msg, input_index=index) from exc
        return [signature + bytes([SigHash.ALL]), key.public_key]


def _is_fundable(output: SpendableOutput) -> bool:
    """Native-coin P2WPKH outputs with a positive value."""
    return output.is_native and output.value > 0 and output.script.type == ScriptType.P2WPKH
