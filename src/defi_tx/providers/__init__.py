"""Provider capabilities and their reference implementations."""

from defi_tx.providers.base import (
    FeeRate,
    FeeRateProvider,
    PrevoutProvider,
    SigningKeyResolver,
    SpendableOutput,
)

__all__ = [
    "FeeRate",
    "FeeRateProvider",
    "PrevoutProvider",
    "SigningKeyResolver",
    "SpendableOutput",
]
