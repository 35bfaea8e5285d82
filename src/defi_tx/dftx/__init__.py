"""Instruction codec — typed records for the ``DfTx`` payload family."""

from defi_tx.dftx.codec import MAGIC, REGISTRY, decode, encode, from_script, lookup, to_script
from defi_tx.dftx.instructions import ALL_INSTRUCTIONS, Instruction

__all__ = [
    "ALL_INSTRUCTIONS",
    "MAGIC",
    "REGISTRY",
    "Instruction",
    "decode",
    "encode",
    "from_script",
    "lookup",
    "to_script",
]
