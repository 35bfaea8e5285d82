"""Address encoding — segwit (bech32), legacy Base58Check and WIF.

All functions take the target :class:`~defi_tx.config.settings.NetworkParams`
explicitly:
- Segwit: human-readable part + witness version + 20-byte Hash160 (bech32)
- Legacy: version byte + 20-byte Hash160 + 4-byte checksum (Base58Check)
- WIF: version byte + 32-byte scalar (+ 0x01 compression flag), Base58Check
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bech32 import bech32_decode, convertbits, encode

from defi_tx.core.keys import base58check_decode, base58check_encode, is_base58
from defi_tx.core.script import Script, locking_script_for, p2pkh_locking_script, p2sh_locking_script
from defi_tx.errors import AddressError, InvalidChecksum, InvalidPrefix
from defi_tx.utils.crypto import hash160

if TYPE_CHECKING:
    from defi_tx.config.settings import NetworkParams

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"


class AddressType(enum.StrEnum):
    """Address forms understood by the core."""

    P2WPKH = "p2wpkh"
    P2PKH = "p2pkh"
    P2SH = "p2sh"


@dataclass(frozen=True)
class DecodedAddress:
    """Result of :func:`parse_address`.

    Attributes:
        type: The address form.
        hash: The 20-byte payload (pubkey hash or script hash).
    """

    type: AddressType
    hash: bytes

    def to_script(self) -> Script:
        """The locking script paying to this address."""
        if self.type == AddressType.P2WPKH:
            return locking_script_for(self.hash)
        if self.type == AddressType.P2SH:
            return p2sh_locking_script(self.hash)
        return p2pkh_locking_script(self.hash)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_address(
    pubkey_hash: bytes,
    network: NetworkParams,
    *,
    address_type: AddressType = AddressType.P2WPKH,
) -> str:
    """Encode a 20-byte hash as an address for *network*.

    Args:
        pubkey_hash: 20-byte Hash160 (of a public key, or of a script for P2SH).
        network: Target network parameters.
        address_type: Segwit (default) or one of the legacy forms.

    Raises:
        ValueError: If the hash is not 20 bytes.
    """
    if len(pubkey_hash) != 20:
        msg = f"pubkey_hash must be 20 bytes, got {len(pubkey_hash)}"
        raise ValueError(msg)
    if address_type == AddressType.P2WPKH:
        address = encode(network.bech32_hrp, network.witness_version, pubkey_hash)
        if address is None:
            msg = "bech32 encoding failed"
            raise ValueError(msg)
        return address
    version = network.script_hash_prefix if address_type == AddressType.P2SH else network.pubkey_hash_prefix
    return base58check_encode(bytes([version]) + pubkey_hash)


def pubkey_to_address(
    pubkey: bytes,
    network: NetworkParams,
    *,
    address_type: AddressType = AddressType.P2WPKH,
) -> str:
    """Address of a compressed/uncompressed public key."""
    return encode_address(hash160(pubkey), network, address_type=address_type)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def parse_address(address: str, network: NetworkParams) -> DecodedAddress:
    """Decode an address of either form, checking it belongs to *network*.

    Raises:
        InvalidPrefix: The hrp / version byte / witness version is not this network's.
        InvalidChecksum: The bech32 or Base58Check checksum does not verify.
        AddressError: The string is neither a segwit nor a legacy address.
    """
    hrp, data = bech32_decode(address)
    if hrp is None:
        hrp = _bech32_hrp(address)
    if hrp is not None:
        if hrp != network.bech32_hrp:
            msg = f"Address hrp {hrp!r} does not match network {network.name} ({network.bech32_hrp!r})"
            raise InvalidPrefix(msg)
        if data is None:
            msg = f"Invalid bech32 checksum for {address!r}"
            raise InvalidChecksum(msg)
        if not data:
            msg = f"Empty segwit address: {address!r}"
            raise AddressError(msg)
        return _parse_segwit(data, network)

    if not is_base58(address):
        msg = f"Not a recognised address: {address!r}"
        raise AddressError(msg)
    try:
        payload = base58check_decode(address)
    except ValueError as exc:
        raise InvalidChecksum(str(exc)) from exc
    if len(payload) != 21:
        msg = f"Invalid address payload length: {len(payload)}"
        raise AddressError(msg)
    version = payload[0]
    if version == network.pubkey_hash_prefix:
        return DecodedAddress(AddressType.P2PKH, payload[1:])
    if version == network.script_hash_prefix:
        return DecodedAddress(AddressType.P2SH, payload[1:])
    msg = f"Address version {version:#04x} does not match network {network.name}"
    raise InvalidPrefix(msg)


def _bech32_hrp(address: str) -> str | None:
    """The hrp of a string shaped like bech32, whatever its checksum."""
    if address.lower() != address and address.upper() != address:
        return None
    lowered = address.lower()
    pos = lowered.rfind("1")
    if pos < 1 or len(lowered) - pos - 1 < 6:
        return None
    if not all(c in _BECH32_CHARSET for c in lowered[pos + 1 :]):
        return None
    return lowered[:pos]


def _parse_segwit(data: list[int], network: NetworkParams) -> DecodedAddress:
    witness_version = data[0]
    if witness_version != network.witness_version:
        msg = f"Witness version {witness_version} not supported on {network.name}"
        raise InvalidPrefix(msg)
    program = convertbits(data[1:], 5, 8, False)
    if program is None or len(program) != 20:
        msg = "Segwit program must be a 20-byte pubkey hash"
        raise AddressError(msg)
    return DecodedAddress(AddressType.P2WPKH, bytes(program))


def decode_address(address: str, network: NetworkParams) -> bytes:
    """Return the 20-byte hash carried by *address* (either form)."""
    return parse_address(address, network).hash


def address_to_script(address: str, network: NetworkParams) -> Script:
    """Locking script that pays to *address*."""
    return parse_address(address, network).to_script()


def validate_address(address: str, network: NetworkParams) -> bool:
    """Check if *address* decodes for *network*."""
    try:
        parse_address(address, network)
    except AddressError:
        return False
    return True


# ---------------------------------------------------------------------------
# WIF
# ---------------------------------------------------------------------------


def privkey_to_wif(privkey: bytes, network: NetworkParams, *, compressed: bool = True) -> str:
    """Encode a 32-byte private key as WIF (Wallet Import Format).

    Args:
        privkey: 32-byte private key scalar.
        network: Supplies the WIF version byte.
        compressed: Append 0x01 flag indicating compressed public key.
    """
    payload = bytes([network.wif_prefix]) + privkey
    if compressed:
        payload += b"\x01"
    return base58check_encode(payload)


def wif_to_privkey(wif: str, network: NetworkParams) -> tuple[bytes, bool]:
    """Decode a WIF string to a private key.

    Returns:
        Tuple of (privkey_bytes, compressed).

    Raises:
        InvalidChecksum: Checksum mismatch.
        InvalidPrefix: Version byte is not the network's WIF prefix.
        AddressError: Not Base58 or wrong payload length.
    """
    if not is_base58(wif):
        msg = "WIF contains non-Base58 characters"
        raise AddressError(msg)
    try:
        payload = base58check_decode(wif)
    except ValueError as exc:
        raise InvalidChecksum(str(exc)) from exc
    if len(payload) == 34 and payload[-1] == 0x01:
        compressed = True
    elif len(payload) == 33:
        compressed = False
    else:
        msg = f"Invalid WIF payload length: {len(payload)}"
        raise AddressError(msg)
    if payload[0] != network.wif_prefix:
        msg = f"WIF version {payload[0]:#04x} does not match network {network.name}"
        raise InvalidPrefix(msg)
    return payload[1:33], compressed
