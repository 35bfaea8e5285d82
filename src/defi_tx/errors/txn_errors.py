"""TxnError — base exception class and the typed failures built on it."""

from __future__ import annotations


class TxnError(Exception):
    """Base error for all transaction construction operations.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code string.
    """

    default_code = "txn-error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


# -- Instruction codec -----------------------------------------------------


class InstructionError(TxnError):
    """An instruction payload could not be encoded or decoded."""

    default_code = "instruction-error"


class MalformedInstruction(InstructionError):
    """Truncated, trailing or otherwise invalid instruction field data."""

    default_code = "malformed-instruction"


class UnsupportedInstruction(InstructionError):
    """The selector byte (or instruction type) is not registered."""

    default_code = "unsupported-instruction"

    def __init__(self, message: str, *, selector: int | None = None) -> None:
        super().__init__(message)
        self.selector = selector


# -- Addresses and keys ----------------------------------------------------


class AddressError(TxnError):
    """An address or WIF string is not decodable at all."""

    default_code = "invalid-address"


class InvalidPrefix(AddressError):
    """Version byte or human-readable part does not match the network."""

    default_code = "invalid-prefix"


class InvalidChecksum(AddressError):
    """Base58Check or bech32 checksum verification failed."""

    default_code = "invalid-checksum"


# -- Transaction container -------------------------------------------------


class MalformedTransaction(TxnError):
    """Raw transaction bytes do not deserialize to a transaction."""

    default_code = "malformed-transaction"


# -- Build -----------------------------------------------------------------


class BuildError(TxnError):
    """The builder could not produce a signed transaction."""

    default_code = "build-error"


class InsufficientFunds(BuildError):
    """Spendable outputs ran out before the funding requirement was met."""

    default_code = "insufficient-funds"

    def __init__(self, message: str, *, required: int = 0, available: int = 0) -> None:
        super().__init__(message)
        self.required = required
        self.available = available


class SigningFailure(BuildError):
    """Key resolution or signature generation failed for an input."""

    default_code = "signing-failure"

    def __init__(self, message: str, *, input_index: int | None = None) -> None:
        super().__init__(message)
        self.input_index = input_index


class FeeRateTooHigh(BuildError):
    """The fee provider reported a rate above the configured ceiling."""

    default_code = "fee-rate-too-high"


# -- Providers -------------------------------------------------------------


class FeeEstimationUnavailable(TxnError):
    """The fee provider has no estimate; the builder falls back to a fixed rate."""

    default_code = "fee-estimation-unavailable"


class ProviderDataError(TxnError):
    """Upstream data did not have the shape the core expects."""

    default_code = "provider-data-error"


class RpcError(TxnError):
    """The node answered a JSON-RPC call with an error object."""

    default_code = "rpc-error"

    def __init__(self, message: str, *, rpc_code: int | None = None) -> None:
        super().__init__(message)
        self.rpc_code = rpc_code
