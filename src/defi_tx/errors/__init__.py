"""Error taxonomy for instruction, address, container and build failures."""

from defi_tx.errors.txn_errors import (
    AddressError,
    BuildError,
    FeeEstimationUnavailable,
    FeeRateTooHigh,
    InstructionError,
    InsufficientFunds,
    InvalidChecksum,
    InvalidPrefix,
    MalformedInstruction,
    MalformedTransaction,
    ProviderDataError,
    RpcError,
    SigningFailure,
    TxnError,
    UnsupportedInstruction,
)

__all__ = [
    "AddressError",
    "BuildError",
    "FeeEstimationUnavailable",
    "FeeRateTooHigh",
    "InstructionError",
    "InsufficientFunds",
    "InvalidChecksum",
    "InvalidPrefix",
    "MalformedInstruction",
    "MalformedTransaction",
    "ProviderDataError",
    "RpcError",
    "SigningFailure",
    "TxnError",
    "UnsupportedInstruction",
]
