"""Builder settings and per-network parameters.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``DEFITX_``, nested via ``__``)
2. YAML config file (``config_path`` / ``DEFITX_CONFIG_PATH`` env var)
3. Defaults defined here

Network parameters (address prefixes, witness version, creation fees) are
plain values injected into the codecs; nothing in :mod:`defi_tx.core`
hardcodes a network.
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from defi_tx.core.amount import COIN

# ---------------------------------------------------------------------------
# Networks
# ---------------------------------------------------------------------------


class NetworkName(enum.StrEnum):
    """Supported network variants."""

    MAINNET = "mainnet"
    TESTNET = "testnet"
    REGTEST = "regtest"


class FoundationKey(BaseModel):
    """A published address and the WIF private key behind it."""

    model_config = ConfigDict(frozen=True)

    address: str
    wif: str


class FoundationMasternode(BaseModel):
    """Owner and operator keys of a masternode created at genesis."""

    model_config = ConfigDict(frozen=True)

    owner: FoundationKey
    operator: FoundationKey


# Legacy P2PKH addresses of the regtest genesis masternodes.
_REGTEST_FOUNDATION = (
    FoundationMasternode(
        owner=FoundationKey(
            address="mwsZw8nF7pKxWH8eoKL9tPxTpaFkz7QeLU",
            wif="cRiRQ9cHmy5evDqNDdEV8f6zfbK6epi9Fpz4CRZsmLEmkwy54dWz",
        ),
        operator=FoundationKey(
            address="mswsMVsyGMj1FzDMbbxw2QW3KvQAv2FKiy",
            wif="cPGEaz8AGiM71NGMRybbCqFNRcuUhg3uGvyY4TFE1BZC26EW2PkC",
        ),
    ),
    FoundationMasternode(
        owner=FoundationKey(
            address="msER9bmJjyEemRpQoS8YYVL21VyZZrSgQ7",
            wif="cSCmN1tjcR2yR1eaQo9WmjTMR85SjEoNPqMPWGAApQiTLJH8JF7W",
        ),
        operator=FoundationKey(
            address="mps7BdmwEF2vQ9DREDyNPibqsuSRZ8LuwQ",
            wif="cVNTRYV43guugJoDgaiPZESvNtnfnUW19YEjhybihwDbLKjyrZNV",
        ),
    ),
)


class NetworkParams(BaseModel):
    """Address prefixes and consensus amounts for one network.

    Attributes:
        name: Network identifier.
        bech32_hrp: Human-readable part of segwit addresses.
        witness_version: Witness version used for pay-to-pubkey-hash outputs.
        pubkey_hash_prefix: Version byte of legacy P2PKH addresses.
        script_hash_prefix: Version byte of legacy P2SH addresses.
        wif_prefix: Version byte of WIF-encoded private keys.
        token_creation_fee: Burned with a CreateToken instruction.
        token_collateral: Locked in the owner output of a CreateToken.
        masternode_creation_fee: Burned with a CreateMasternode instruction.
        masternode_collateral: Locked in the owner output of a CreateMasternode.
        cfp_fee_ratio_ppm: Community fund proposal fee as parts-per-million of the request.
        cfp_min_fee: Lower bound of the community fund proposal fee.
        voc_fee: Fixed fee of a vote-of-confidence proposal.
        foundation_keys: Genesis masternode keys of development networks.
    """

    model_config = ConfigDict(frozen=True)

    name: NetworkName
    bech32_hrp: str
    witness_version: int = Field(default=0, ge=0, le=16)
    pubkey_hash_prefix: int = Field(ge=0, le=0xFF)
    script_hash_prefix: int = Field(ge=0, le=0xFF)
    wif_prefix: int = Field(ge=0, le=0xFF)
    token_creation_fee: int = 1 * COIN
    token_collateral: int = 100 * COIN
    masternode_creation_fee: int = 10 * COIN
    masternode_collateral: int = 20_000 * COIN
    cfp_fee_ratio_ppm: int = 10_000
    cfp_min_fee: int = 10 * COIN
    voc_fee: int = 50 * COIN
    foundation_keys: tuple[FoundationMasternode, ...] = ()


_NETWORKS: dict[NetworkName, NetworkParams] = {
    NetworkName.MAINNET: NetworkParams(
        name=NetworkName.MAINNET,
        bech32_hrp="df",
        pubkey_hash_prefix=0x12,
        script_hash_prefix=0x5A,
        wif_prefix=0x80,
    ),
    NetworkName.TESTNET: NetworkParams(
        name=NetworkName.TESTNET,
        bech32_hrp="tf",
        pubkey_hash_prefix=0x0F,
        script_hash_prefix=0x80,
        wif_prefix=0xEF,
    ),
    NetworkName.REGTEST: NetworkParams(
        name=NetworkName.REGTEST,
        bech32_hrp="bcrt",
        pubkey_hash_prefix=0x6F,
        script_hash_prefix=0xC4,
        wif_prefix=0xEF,
        token_collateral=10 * COIN,
        masternode_creation_fee=1 * COIN,
        masternode_collateral=2 * COIN,
        voc_fee=5 * COIN,
        foundation_keys=_REGTEST_FOUNDATION,
    ),
}


def get_network(name: NetworkName | str) -> NetworkParams:
    """Return the built-in parameters for *name*.

    Raises:
        ValueError: If *name* is not a known network.
    """
    return _NETWORKS[NetworkName(name)]


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class RpcConfig(BaseSettings):
    """JSON-RPC endpoint of the node used by the reference providers."""

    model_config = SettingsConfigDict(
        env_prefix="DEFITX_RPC__",
        case_sensitive=False,
    )

    url: str = "http://127.0.0.1:19554"
    user: str = ""
    password: str = ""
    timeout: float = 30.0
    min_confirmations: int = 1


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class BuilderConfig(BaseSettings):
    """Top-level builder configuration.

    Fee amounts are minor units; ``fallback_fee_rate`` and ``max_fee_rate``
    are minor units per 1000 virtual bytes.
    """

    model_config = SettingsConfigDict(
        env_prefix="DEFITX_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    config_path: str = ""
    network: NetworkName = NetworkName.REGTEST
    transaction_version: int = 4
    sequence: int = 0xFFFFFFFF
    fallback_fee_rate: int = Field(default=5_000, ge=0)
    max_fee_rate: int = Field(default=10_000_000, gt=0)
    dust_threshold: int = Field(default=546, ge=0)
    max_selection_rounds: int = Field(default=16, ge=1)
    networks: dict[NetworkName, dict[str, Any]] = Field(default_factory=dict)

    rpc: RpcConfig = Field(default_factory=RpcConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``BuilderConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))

    def network_params(self) -> NetworkParams:
        """Built-in parameters for ``network`` with any configured overrides applied."""
        base = get_network(self.network)
        overrides = self.networks.get(self.network)
        if not overrides:
            return base
        return NetworkParams.model_validate({**base.model_dump(), **overrides})
