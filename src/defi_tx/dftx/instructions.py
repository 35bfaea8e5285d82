"""Instruction records carried in ``OP_RETURN`` outputs.

Every instruction kind is a frozen dataclass tagged with a one-byte ASCII
selector. Its fields are written in declaration order with the codec given
to :func:`~defi_tx.dftx.fields.wire`. Amounts are integer minor units
(``1 coin == 100_000_000``); transaction ids are display-order hex strings.
Sequences are tuples so that decoded records compare equal to the ones
that were encoded.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from io import BytesIO
from typing import ClassVar

from defi_tx.core.amount import COIN
from defi_tx.core.buffer import read_struct
from defi_tx.core.script import Script
from defi_tx.dftx.fields import (
    AMOUNT,
    BOOL8,
    BOOL32,
    SCRIPT,
    TXID,
    U8,
    U16,
    U32,
    U64,
    UTF8,
    VARBYTES,
    VARUINT,
    ArrayOf,
    FixedBytes,
    Nested,
    OptionalTail,
    Record,
    wire,
)

# ---------------------------------------------------------------------------
# Nested records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenBalance(Record):
    """Token id (4-byte) and amount."""

    token: int = wire(U32)
    amount: int = wire(AMOUNT)


@dataclass(frozen=True)
class PoolPrice(Record):
    """Swap price limit as two independent signed 64-bit parts.

    The node reads it as ``integer + fraction / 10**8`` without normalizing,
    so ``fraction`` may exceed one coin.
    """

    integer: int = wire(AMOUNT)
    fraction: int = wire(AMOUNT)

    @classmethod
    def from_minor_units(cls, value: int) -> PoolPrice:
        """Split a price in minor units into whole coins and remainder."""
        integer, fraction = divmod(value, COIN)
        return cls(integer, fraction)


_INT64_MAX = 2**63 - 1

# "No limit" price used by the node when none is given.
POOL_PRICE_MAX = PoolPrice(_INT64_MAX, _INT64_MAX)


@dataclass(frozen=True)
class TokenBalanceVarInt(Record):
    """Token id (compact-size) and amount."""

    token: int = wire(VARUINT)
    amount: int = wire(AMOUNT)


@dataclass(frozen=True)
class ScriptBalances(Record):
    """Balances held by one account script."""

    script: Script = wire(SCRIPT)
    balances: tuple[TokenBalance, ...] = wire(ArrayOf(Nested(TokenBalance)), default=())


@dataclass(frozen=True)
class CurrencyPair(Record):
    token: str = wire(UTF8)
    currency: str = wire(UTF8)


@dataclass(frozen=True)
class TokenAmount(Record):
    currency: str = wire(UTF8)
    amount: int = wire(AMOUNT)


@dataclass(frozen=True)
class TokenPrice(Record):
    token: str = wire(UTF8)
    prices: tuple[TokenAmount, ...] = wire(ArrayOf(Nested(TokenAmount)), default=())


@dataclass(frozen=True)
class MasternodeUpdate(Record):
    """One change applied by :class:`UpdateMasternode`.

    ``update_type``: 1 owner address, 2 operator address, 3 reward address,
    4 remove reward address. ``address_type`` is 1 (P2PKH) or 4 (P2WPKH).
    """

    update_type: int = wire(U8)
    address_type: int = wire(U8)
    address_hash: bytes = wire(VARBYTES, default=b"")


@dataclass(frozen=True)
class TokenFlags:
    """Token property bits. ``extra_bits`` keeps any bits not modelled here."""

    is_dat: bool = False
    tradeable: bool = True
    mintable: bool = True
    extra_bits: int = 0


class _TokenFlagsCodec:
    _MINTABLE = 0x01
    _TRADEABLE = 0x02
    _DAT = 0x04

    def encode(self, value: TokenFlags) -> bytes:
        if not isinstance(value, TokenFlags):
            msg = f"expected TokenFlags, got {type(value).__name__}"
            raise TypeError(msg)
        bits = value.extra_bits & ~(self._MINTABLE | self._TRADEABLE | self._DAT)
        if value.mintable:
            bits |= self._MINTABLE
        if value.tradeable:
            bits |= self._TRADEABLE
        if value.is_dat:
            bits |= self._DAT
        return U8.encode(bits)

    def decode(self, stream: BytesIO) -> TokenFlags:
        bits = read_struct(stream, "<B")
        return TokenFlags(
            is_dat=bool(bits & self._DAT),
            tradeable=bool(bits & self._TRADEABLE),
            mintable=bool(bits & self._MINTABLE),
            extra_bits=bits & ~(self._MINTABLE | self._TRADEABLE | self._DAT),
        )


TOKEN_FLAGS = _TokenFlagsCodec()


class ProposalType(enum.IntEnum):
    COMMUNITY_FUND = 0x01
    VOTE_OF_CONFIDENCE = 0x02


class VoteDecision(enum.IntEnum):
    YES = 0x01
    NO = 0x02
    NEUTRAL = 0x03


# ---------------------------------------------------------------------------
# Instruction base
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Instruction(Record):
    """Base of all instruction kinds.

    Subclasses pass their selector as a class keyword::

        @dataclass(frozen=True)
        class CloseVault(Instruction, selector="e"): ...
    """

    SELECTOR: ClassVar[int | None] = None

    def __init_subclass__(cls, *, selector: str | None = None, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        cls.SELECTOR = ord(selector) if selector is not None else None


# ---------------------------------------------------------------------------
# Masternodes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateMasternode(Instruction, selector="C"):
    """Register a masternode; ``operator_pub_key_hash`` is the raw Hash160.

    ``timelock`` (in years, 0/5/10) is omitted from the payload when None.
    """

    operator_type: int = wire(U8)
    operator_pub_key_hash: bytes = wire(FixedBytes(20))
    timelock: int | None = wire(OptionalTail(U16), default=None)


@dataclass(frozen=True)
class ResignMasternode(Instruction, selector="R"):
    node_id: str = wire(TXID)


@dataclass(frozen=True)
class UpdateMasternode(Instruction, selector="m"):
    node_id: str = wire(TXID)
    updates: tuple[MasternodeUpdate, ...] = wire(ArrayOf(Nested(MasternodeUpdate)), default=())


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateToken(Instruction, selector="T"):
    symbol: str = wire(UTF8)
    name: str = wire(UTF8)
    decimal: int = wire(U8, default=8)
    limit: int = wire(U64, default=0)
    flags: TokenFlags = wire(TOKEN_FLAGS, default=TokenFlags())


@dataclass(frozen=True)
class UpdateToken(Instruction, selector="N"):
    creation_tx: str = wire(TXID)
    is_dat: bool = wire(BOOL8, default=False)


@dataclass(frozen=True)
class UpdateTokenAny(Instruction, selector="n"):
    creation_tx: str = wire(TXID)
    symbol: str = wire(UTF8)
    name: str = wire(UTF8)
    decimal: int = wire(U8, default=8)
    limit: int = wire(U64, default=0)
    flags: TokenFlags = wire(TOKEN_FLAGS, default=TokenFlags())


@dataclass(frozen=True)
class MintToken(Instruction, selector="M"):
    balances: tuple[TokenBalance, ...] = wire(ArrayOf(Nested(TokenBalance)), default=())


# ---------------------------------------------------------------------------
# Pools
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreatePoolPair(Instruction, selector="p"):
    token_a: int = wire(VARUINT)
    token_b: int = wire(VARUINT)
    commission: int = wire(AMOUNT)
    owner_address: Script = wire(SCRIPT)
    status: bool = wire(BOOL8, default=True)
    pair_symbol: str = wire(UTF8, default="")
    custom_rewards: tuple[TokenBalance, ...] = wire(ArrayOf(Nested(TokenBalance)), default=())


@dataclass(frozen=True)
class UpdatePoolPair(Instruction, selector="u"):
    pool_id: int = wire(VARUINT)
    status: bool = wire(BOOL32)
    commission: int = wire(AMOUNT)
    owner_address: Script = wire(SCRIPT)
    custom_rewards: tuple[TokenBalance, ...] = wire(ArrayOf(Nested(TokenBalance)), default=())


@dataclass(frozen=True)
class PoolSwap(Instruction, selector="s"):
    """Swap through a single pool. See :class:`PoolPrice` for ``max_price``."""

    from_script: Script = wire(SCRIPT)
    from_token_id: int = wire(VARUINT)
    from_amount: int = wire(AMOUNT)
    to_script: Script = wire(SCRIPT)
    to_token_id: int = wire(VARUINT)
    max_price: PoolPrice = wire(Nested(PoolPrice), default=POOL_PRICE_MAX)


@dataclass(frozen=True)
class CompositeSwap(Instruction, selector="i"):
    """A :class:`PoolSwap` routed through the listed pool ids."""

    from_script: Script = wire(SCRIPT)
    from_token_id: int = wire(VARUINT)
    from_amount: int = wire(AMOUNT)
    to_script: Script = wire(SCRIPT)
    to_token_id: int = wire(VARUINT)
    max_price: PoolPrice = wire(Nested(PoolPrice), default=POOL_PRICE_MAX)
    pools: tuple[int, ...] = wire(ArrayOf(VARUINT), default=())


@dataclass(frozen=True)
class AddPoolLiquidity(Instruction, selector="l"):
    from_accounts: tuple[ScriptBalances, ...] = wire(ArrayOf(Nested(ScriptBalances)))
    share_address: Script = wire(SCRIPT)


@dataclass(frozen=True)
class RemovePoolLiquidity(Instruction, selector="r"):
    script: Script = wire(SCRIPT)
    token_id: int = wire(VARUINT)
    amount: int = wire(AMOUNT)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UtxosToAccount(Instruction, selector="U"):
    to: tuple[ScriptBalances, ...] = wire(ArrayOf(Nested(ScriptBalances)), default=())


@dataclass(frozen=True)
class AccountToUtxos(Instruction, selector="b"):
    from_script: Script = wire(SCRIPT)
    balances: tuple[TokenBalance, ...] = wire(ArrayOf(Nested(TokenBalance)))
    minting_outputs_start: int = wire(U8)


@dataclass(frozen=True)
class AccountToAccount(Instruction, selector="B"):
    from_script: Script = wire(SCRIPT)
    to: tuple[ScriptBalances, ...] = wire(ArrayOf(Nested(ScriptBalances)), default=())


@dataclass(frozen=True)
class AnyAccountToAccount(Instruction, selector="a"):
    from_accounts: tuple[ScriptBalances, ...] = wire(ArrayOf(Nested(ScriptBalances)), default=())
    to: tuple[ScriptBalances, ...] = wire(ArrayOf(Nested(ScriptBalances)), default=())


# ---------------------------------------------------------------------------
# Oracles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AppointOracle(Instruction, selector="o"):
    script: Script = wire(SCRIPT)
    weightage: int = wire(U8)
    price_feeds: tuple[CurrencyPair, ...] = wire(ArrayOf(Nested(CurrencyPair)), default=())


@dataclass(frozen=True)
class RemoveOracle(Instruction, selector="h"):
    oracle_id: str = wire(TXID)


@dataclass(frozen=True)
class UpdateOracle(Instruction, selector="t"):
    oracle_id: str = wire(TXID)
    script: Script = wire(SCRIPT)
    weightage: int = wire(U8)
    price_feeds: tuple[CurrencyPair, ...] = wire(ArrayOf(Nested(CurrencyPair)), default=())


@dataclass(frozen=True)
class SetOracleData(Instruction, selector="y"):
    oracle_id: str = wire(TXID)
    timestamp: int = wire(U64)
    tokens: tuple[TokenPrice, ...] = wire(ArrayOf(Nested(TokenPrice)), default=())


# ---------------------------------------------------------------------------
# Loans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SetLoanScheme(Instruction, selector="L"):
    """Create a loan scheme, or update it from block ``update`` (0 means now)."""

    ratio: int = wire(U32)
    rate: int = wire(AMOUNT)
    identifier: str = wire(UTF8)
    update: int = wire(U64, default=0)


@dataclass(frozen=True)
class SetDefaultLoanScheme(Instruction, selector="d"):
    identifier: str = wire(UTF8)


@dataclass(frozen=True)
class DestroyLoanScheme(Instruction, selector="D"):
    identifier: str = wire(UTF8)
    height: int = wire(U64, default=0)


@dataclass(frozen=True)
class SetCollateralToken(Instruction, selector="c"):
    token: int = wire(VARUINT)
    factor: int = wire(AMOUNT)
    currency_pair: CurrencyPair = wire(Nested(CurrencyPair))
    activate_after_block: int = wire(U32, default=0)


@dataclass(frozen=True)
class SetLoanToken(Instruction, selector="g"):
    symbol: str = wire(UTF8)
    name: str = wire(UTF8)
    currency_pair: CurrencyPair = wire(Nested(CurrencyPair))
    mintable: bool = wire(BOOL8, default=True)
    interest: int = wire(AMOUNT, default=0)


@dataclass(frozen=True)
class UpdateLoanToken(Instruction, selector="x"):
    symbol: str = wire(UTF8)
    name: str = wire(UTF8)
    currency_pair: CurrencyPair = wire(Nested(CurrencyPair))
    mintable: bool = wire(BOOL8)
    interest: int = wire(AMOUNT)
    token_tx: str = wire(TXID)


# ---------------------------------------------------------------------------
# Vaults
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateVault(Instruction, selector="V"):
    """Open a vault; an empty ``scheme_id`` selects the default loan scheme."""

    owner_address: Script = wire(SCRIPT)
    scheme_id: str = wire(UTF8, default="")


@dataclass(frozen=True)
class UpdateVault(Instruction, selector="v"):
    vault_id: str = wire(TXID)
    owner_address: Script = wire(SCRIPT)
    scheme_id: str = wire(UTF8)


@dataclass(frozen=True)
class DepositToVault(Instruction, selector="S"):
    vault_id: str = wire(TXID)
    from_script: Script = wire(SCRIPT)
    token_amount: TokenBalanceVarInt = wire(Nested(TokenBalanceVarInt))


@dataclass(frozen=True)
class WithdrawFromVault(Instruction, selector="J"):
    vault_id: str = wire(TXID)
    to: Script = wire(SCRIPT)
    token_amount: TokenBalanceVarInt = wire(Nested(TokenBalanceVarInt))


@dataclass(frozen=True)
class CloseVault(Instruction, selector="e"):
    vault_id: str = wire(TXID)
    to: Script = wire(SCRIPT)


@dataclass(frozen=True)
class TakeLoan(Instruction, selector="X"):
    vault_id: str = wire(TXID)
    to: Script = wire(SCRIPT)
    token_amounts: tuple[TokenBalance, ...] = wire(ArrayOf(Nested(TokenBalance)), default=())


@dataclass(frozen=True)
class PaybackLoan(Instruction, selector="H"):
    vault_id: str = wire(TXID)
    from_script: Script = wire(SCRIPT)
    token_amounts: tuple[TokenBalance, ...] = wire(ArrayOf(Nested(TokenBalance)), default=())


@dataclass(frozen=True)
class PlaceAuctionBid(Instruction, selector="I"):
    vault_id: str = wire(TXID)
    index: int = wire(U32)
    from_script: Script = wire(SCRIPT)
    token_amount: TokenBalanceVarInt = wire(Nested(TokenBalanceVarInt))


# ---------------------------------------------------------------------------
# Governance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Proposal(Instruction):
    proposal_type: int = wire(U8)
    address: Script = wire(SCRIPT)
    amount: int = wire(AMOUNT)
    cycles: int = wire(U8)
    title: str = wire(UTF8)
    context: str = wire(UTF8)
    context_hash: str = wire(UTF8, default="")
    options: int = wire(U8, default=0)


@dataclass(frozen=True)
class CreateCfp(_Proposal, selector="z"):
    """Community fund proposal: pay ``amount`` to ``address`` over ``cycles``."""


@dataclass(frozen=True)
class CreateVoc(_Proposal, selector="E"):
    """Vote of confidence; ``amount`` is 0 and ``cycles`` is 1 by convention."""


@dataclass(frozen=True)
class Vote(Instruction, selector="O"):
    proposal_id: str = wire(TXID)
    masternode_id: str = wire(TXID)
    decision: int = wire(U8)


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SetFutureSwap(Instruction, selector="Q"):
    owner: Script = wire(SCRIPT)
    source: TokenBalanceVarInt = wire(Nested(TokenBalanceVarInt))
    destination: int = wire(U32, default=0)
    withdraw: bool = wire(BOOL8, default=False)


@dataclass(frozen=True)
class AutoAuthPrep(Instruction, selector="A"):
    """Marker instruction with no payload fields."""


#: Every concrete instruction kind, in selector registry order.
ALL_INSTRUCTIONS: tuple[type[Instruction], ...] = (
    CreateMasternode,
    ResignMasternode,
    UpdateMasternode,
    CreateToken,
    UpdateToken,
    UpdateTokenAny,
    MintToken,
    CreatePoolPair,
    UpdatePoolPair,
    PoolSwap,
    CompositeSwap,
    AddPoolLiquidity,
    RemovePoolLiquidity,
    UtxosToAccount,
    AccountToUtxos,
    AccountToAccount,
    AnyAccountToAccount,
    AppointOracle,
    RemoveOracle,
    UpdateOracle,
    SetOracleData,
    SetLoanScheme,
    SetDefaultLoanScheme,
    DestroyLoanScheme,
    SetCollateralToken,
    SetLoanToken,
    UpdateLoanToken,
    CreateVault,
    UpdateVault,
    DepositToVault,
    WithdrawFromVault,
    CloseVault,
    TakeLoan,
    PaybackLoan,
    PlaceAuctionBid,
    CreateCfp,
    CreateVoc,
    Vote,
    SetFutureSwap,
    AutoAuthPrep,
)
