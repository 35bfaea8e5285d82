"""defi_tx — off-node construction, encoding and signing of DeFi transactions.

The consensus node only ever sees the finished, signed transaction; everything
from instruction encoding to witness signing happens here.
"""

from defi_tx.builder.builder import BuildResult, TransactionBuilder
from defi_tx.config.settings import BuilderConfig, NetworkName, NetworkParams, get_network
from defi_tx.core.keys import KeyPair
from defi_tx.core.script import Script
from defi_tx.core.transaction import Transaction, TxInput, TxOutput

__version__ = "0.1.0"

__all__ = [
    "BuildResult",
    "BuilderConfig",
    "KeyPair",
    "NetworkName",
    "NetworkParams",
    "Script",
    "Transaction",
    "TransactionBuilder",
    "TxInput",
    "TxOutput",
    "get_network",
]
