"""Transaction builder and fee estimation."""

from defi_tx.builder.builder import BuildResult, TransactionBuilder
from defi_tx.builder.fee import estimate_fee, estimate_vsize

__all__ = ["BuildResult", "TransactionBuilder", "estimate_fee", "estimate_vsize"]
