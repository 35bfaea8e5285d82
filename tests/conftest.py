"""Shared test fixtures for the defi_tx test suite."""

from __future__ import annotations

import pytest

from defi_tx.config.settings import BuilderConfig, NetworkName, NetworkParams, get_network
from defi_tx.core.keys import KeyPair
from defi_tx.core.script import Script, locking_script_for
from defi_tx.providers.base import SpendableOutput

# Private key 1: the generator point, used by many published vectors
PRIVKEY_ONE = (1).to_bytes(32, "big")


@pytest.fixture
def regtest() -> NetworkParams:
    return get_network(NetworkName.REGTEST)


@pytest.fixture
def bitcoin_like() -> NetworkParams:
    """Network parameters with Bitcoin's prefixes, for published vectors."""
    return NetworkParams(
        name=NetworkName.MAINNET,
        bech32_hrp="bc",
        pubkey_hash_prefix=0x00,
        script_hash_prefix=0x05,
        wif_prefix=0x80,
    )


@pytest.fixture
def key_one() -> KeyPair:
    return KeyPair(PRIVKEY_ONE)


@pytest.fixture
def owner_script(key_one: KeyPair) -> Script:
    return locking_script_for(key_one.pubkey_hash)


@pytest.fixture
def builder_config() -> BuilderConfig:
    return BuilderConfig(network=NetworkName.REGTEST)


@pytest.fixture
def make_prevout(owner_script: Script):
    """Factory for spendable outputs locked to ``key_one``."""

    def _make(value: int, *, index: int = 0, token_id: int | None = 0, script: Script | None = None):
        return SpendableOutput(
            txid=f"{index + 1:064x}",
            vout=index,
            value=value,
            script=script or owner_script,
            token_id=token_id,
        )

    return _make
