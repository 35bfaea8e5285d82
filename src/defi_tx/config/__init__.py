"""Configuration — network parameters and builder settings."""

from defi_tx.config.settings import (
    BuilderConfig,
    FoundationKey,
    FoundationMasternode,
    NetworkName,
    NetworkParams,
    RpcConfig,
    get_network,
)

__all__ = [
    "BuilderConfig",
    "FoundationKey",
    "FoundationMasternode",
    "NetworkName",
    "NetworkParams",
    "RpcConfig",
    "get_network",
]
