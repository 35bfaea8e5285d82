"""Provider capabilities consumed by the builder.

The builder never talks to a node directly. It depends on three async
capabilities, each expressed as a :class:`typing.Protocol`:

- :class:`PrevoutProvider`: spendable outputs controlled by the signer
- :class:`FeeRateProvider`: best-effort fee rate per 1000 virtual bytes
- :class:`SigningKeyResolver`: the key that may spend a given output
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from defi_tx.core.keys import KeyPair
    from defi_tx.core.script import Script

# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SpendableOutput:
    """An unspent output the signer controls.

    Attributes:
        txid: Source transaction id (display hex).
        vout: Output index within the source transaction.
        value: Amount in minor units.
        script: Locking script of the output.
        token_id: Token carried by the output; 0 or None for the native coin.
    """

    txid: str
    vout: int
    value: int
    script: Script
    token_id: int | None = 0

    @property
    def outpoint(self) -> tuple[str, int]:
        return (self.txid, self.vout)

    @property
    def is_native(self) -> bool:
        """True if the output holds the native coin and may fund fees."""
        return not self.token_id


@dataclass(frozen=True)
class FeeRate:
    """Fee rate in minor units per 1000 virtual bytes."""

    per_kb: int

    def __post_init__(self) -> None:
        if self.per_kb < 0:
            msg = f"fee rate must be non-negative, got {self.per_kb}"
            raise ValueError(msg)

    def fee_for_vsize(self, vsize: int) -> int:
        """Fee for a transaction of *vsize* virtual bytes, rounded up."""
        return -(-self.per_kb * vsize // 1000)


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@runtime_checkable
class PrevoutProvider(Protocol):
    async def collect(self, minimum_value: int) -> Sequence[SpendableOutput]:
        """Return outputs worth at least *minimum_value* in total if available.

        Order is arbitrary. Returning fewer (or none) signals exhaustion.
        """
        ...


@runtime_checkable
class FeeRateProvider(Protocol):
    async def estimate(self) -> FeeRate:
        """Return a fee rate.

        Raises:
            FeeEstimationUnavailable: No estimate can be produced.
        """
        ...


@runtime_checkable
class SigningKeyResolver(Protocol):
    async def key_for(self, output: SpendableOutput) -> KeyPair:
        """Return the key authorized to spend *output*."""
        ...
