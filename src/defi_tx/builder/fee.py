"""Fee estimation on the unsigned transaction.

The size is measured on a copy of the candidate whose inputs carry
worst-case P2WPKH witnesses, so the signed transaction never pays less
than the estimate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from defi_tx.core.transaction import Transaction

if TYPE_CHECKING:
    from defi_tx.providers.base import FeeRate

# DER signature (72 max) + sighash byte
DUMMY_SIGNATURE_SIZE = 73
# Compressed public key
DUMMY_PUBKEY_SIZE = 33


def estimate_vsize(tx: Transaction) -> int:
    """Virtual size of *tx* once every input has a P2WPKH witness."""
    stub = Transaction(
        version=tx.version,
        inputs=list(tx.inputs),
        outputs=list(tx.outputs),
        witnesses=[[bytes(DUMMY_SIGNATURE_SIZE), bytes(DUMMY_PUBKEY_SIZE)] for _ in tx.inputs],
        locktime=tx.locktime,
    )
    return stub.vsize()


def estimate_fee(tx: Transaction, rate: FeeRate) -> int:
    """Fee for *tx* at *rate*: ``ceil(rate * vsize / 1000)``."""
    return rate.fee_for_vsize(estimate_vsize(tx))
