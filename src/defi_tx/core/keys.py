"""Keys and signatures — Base58Check, secp256k1 key pairs, canonical ECDSA.

Implements the key half of the key & address module:
- Base58 / Base58Check encoding and decoding
- Compressed / uncompressed public key encoding
- Deterministic (RFC 6979) ECDSA signing, canonicalised to low-S
- Strict DER encoding / decoding and signature verification
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Self

from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.keys import BadSignatureError

from defi_tx.utils.crypto import checksum, hash160

if TYPE_CHECKING:
    from defi_tx.config.settings import NetworkParams

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CURVE = SECP256k1
_CURVE_ORDER = _CURVE.order
_HALF_ORDER = _CURVE_ORDER // 2


# ---------------------------------------------------------------------------
# Base58Check encoding / decoding
# ---------------------------------------------------------------------------

_B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def base58_encode(payload: bytes) -> str:
    """Encode raw bytes to Base58 (no checksum)."""
    n = int.from_bytes(payload, "big")
    result: list[int] = []
    while n > 0:
        n, remainder = divmod(n, 58)
        result.append(_B58_ALPHABET[remainder])
    # Preserve leading zero bytes
    for byte in payload:
        if byte == 0:
            result.append(_B58_ALPHABET[0])
        else:
            break
    return bytes(reversed(result)).decode("ascii")


def base58_decode(s: str) -> bytes:
    """Decode Base58 string to raw bytes (no checksum).

    Raises:
        ValueError: If *s* contains a character outside the Base58 alphabet.
    """
    n = 0
    for char in s:
        index = _B58_ALPHABET.find(char.encode("ascii", "replace"))
        if index < 0:
            msg = f"Invalid Base58 character: {char!r}"
            raise ValueError(msg)
        n = n * 58 + index
    result = n.to_bytes((n.bit_length() + 7) // 8, "big") if n > 0 else b""
    pad_count = len(s) - len(s.lstrip("1"))
    return b"\x00" * pad_count + result


def is_base58(s: str) -> bool:
    """True if every character of *s* is in the Base58 alphabet."""
    return bool(s) and all(c.isascii() and c.encode("ascii") in _B58_ALPHABET for c in s)


def base58check_encode(payload: bytes) -> str:
    """Encode bytes with a 4-byte double-SHA-256 checksum (Base58Check)."""
    return base58_encode(payload + checksum(payload))


def base58check_decode(s: str) -> bytes:
    """Decode a Base58Check string, verifying the checksum.

    Raises:
        ValueError: If the string is not Base58 or the checksum is invalid.
    """
    raw = base58_decode(s)
    if len(raw) < 4:
        msg = "Base58Check string too short"
        raise ValueError(msg)
    payload, check = raw[:-4], raw[-4:]
    if check != checksum(payload):
        msg = "Base58Check checksum mismatch"
        raise ValueError(msg)
    return payload


# ---------------------------------------------------------------------------
# Public key encoding
# ---------------------------------------------------------------------------


def private_key_to_public_key(privkey_bytes: bytes, *, compressed: bool = True) -> bytes:
    """Derive the public key from a 32-byte private key.

    Args:
        privkey_bytes: 32-byte big-endian scalar.
        compressed: If True, return the 33-byte SEC compressed encoding.

    Returns:
        The public key bytes (33 compressed or 65 uncompressed).
    """
    sk = SigningKey.from_string(privkey_bytes, curve=_CURVE)
    vk = sk.get_verifying_key()
    if compressed:
        return compress_public_key(vk.to_string())
    return b"\x04" + vk.to_string()


def compress_public_key(raw_pubkey: bytes) -> bytes:
    """Compress a 64-byte (or 65-byte with 0x04 prefix) raw public key to 33 bytes."""
    if len(raw_pubkey) == 65 and raw_pubkey[0] == 0x04:
        raw_pubkey = raw_pubkey[1:]
    if len(raw_pubkey) != 64:
        if len(raw_pubkey) == 33 and raw_pubkey[0] in (0x02, 0x03):
            return raw_pubkey
        msg = f"Invalid raw public key length: {len(raw_pubkey)}"
        raise ValueError(msg)
    x = int.from_bytes(raw_pubkey[:32], "big")
    y = int.from_bytes(raw_pubkey[32:], "big")
    prefix = b"\x02" if y % 2 == 0 else b"\x03"
    return prefix + x.to_bytes(32, "big")


def decompress_public_key(compressed: bytes) -> bytes:
    """Decompress a 33-byte compressed public key to 65-byte uncompressed."""
    if len(compressed) != 33:
        msg = f"Invalid compressed key length: {len(compressed)}"
        raise ValueError(msg)
    prefix = compressed[0]
    if prefix not in (0x02, 0x03):
        msg = f"Invalid compressed key prefix: {prefix:#x}"
        raise ValueError(msg)
    x = int.from_bytes(compressed[1:], "big")
    p = _CURVE.curve.p()
    # y^2 = x^3 + 7  (mod p)  for secp256k1
    y_sq = (pow(x, 3, p) + 7) % p
    y = pow(y_sq, (p + 1) // 4, p)
    if (y * y) % p != y_sq:
        msg = "Compressed key is not on the curve"
        raise ValueError(msg)
    if (y % 2 == 0) != (prefix == 0x02):
        y = p - y
    return b"\x04" + x.to_bytes(32, "big") + y.to_bytes(32, "big")


# ---------------------------------------------------------------------------
# ECDSA
# ---------------------------------------------------------------------------


def sign_message(privkey_bytes: bytes, message_hash: bytes) -> bytes:
    """Sign a 32-byte hash deterministically; DER-encoded, low-S.

    The nonce is derived from the key and the message (RFC 6979), so the
    same inputs always produce the same signature.
    """
    if len(message_hash) != 32:
        msg = f"message_hash must be 32 bytes, got {len(message_hash)}"
        raise ValueError(msg)
    sk = SigningKey.from_string(privkey_bytes, curve=_CURVE)
    return sk.sign_digest_deterministic(
        message_hash,
        hashfunc=hashlib.sha256,
        sigencode=_der_encode,
    )


def verify_signature(
    pubkey_bytes: bytes,
    message_hash: bytes,
    signature: bytes,
    *,
    require_low_s: bool = True,
) -> bool:
    """Verify a DER-encoded signature against a public key and message hash.

    High-S signatures are rejected unless ``require_low_s`` is False.
    """
    try:
        _r, s = _der_decode(signature, _CURVE_ORDER)
    except ValueError:
        return False
    if require_low_s and s > _HALF_ORDER:
        return False
    try:
        if len(pubkey_bytes) == 33:
            raw_key = decompress_public_key(pubkey_bytes)[1:]
        elif len(pubkey_bytes) == 65:
            raw_key = pubkey_bytes[1:]
        else:
            raw_key = pubkey_bytes
        vk = VerifyingKey.from_string(raw_key, curve=_CURVE)
        return vk.verify_digest(signature, message_hash, sigdecode=_der_decode)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False


def is_low_s(signature: bytes) -> bool:
    """True if the DER signature's ``s`` is in the lower half of the order."""
    _r, s = _der_decode(signature, _CURVE_ORDER)
    return s <= _HALF_ORDER


def _der_encode(r: int, s: int, order: int) -> bytes:
    """Encode r, s as a DER signature, replacing a high ``s`` by ``order - s``."""
    if s > order // 2:
        s = order - s
    rb = _int_to_der_bytes(r)
    sb = _int_to_der_bytes(s)
    return b"\x30" + bytes([len(rb) + len(sb)]) + rb + sb


def _der_decode(signature: bytes, order: int) -> tuple[int, int]:
    """Decode a strict DER signature to (r, s).

    Raises:
        ValueError: On any structural deviation from DER.
    """
    if len(signature) < 8 or signature[0] != 0x30:
        msg = "Invalid DER signature"
        raise ValueError(msg)
    if signature[1] != len(signature) - 2:
        msg = "Invalid DER signature (length)"
        raise ValueError(msg)
    idx = 2
    values: list[int] = []
    for marker in ("r", "s"):
        if idx + 2 > len(signature) or signature[idx] != 0x02:
            msg = f"Invalid DER signature ({marker} marker)"
            raise ValueError(msg)
        length = signature[idx + 1]
        start = idx + 2
        end = start + length
        if length == 0 or end > len(signature):
            msg = f"Invalid DER signature ({marker} length)"
            raise ValueError(msg)
        value = int.from_bytes(signature[start:end], "big")
        if not 0 < value < order:
            msg = f"Invalid DER signature ({marker} out of range)"
            raise ValueError(msg)
        values.append(value)
        idx = end
    if idx != len(signature):
        msg = "Invalid DER signature (trailing bytes)"
        raise ValueError(msg)
    return values[0], values[1]


def _int_to_der_bytes(n: int) -> bytes:
    """Encode an integer as a DER INTEGER TLV."""
    b = n.to_bytes((n.bit_length() + 7) // 8, "big")
    if b[0] & 0x80:
        b = b"\x00" + b
    return b"\x02" + bytes([len(b)]) + b


# ---------------------------------------------------------------------------
# Key pair
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeyPair:
    """A secp256k1 private scalar and its derived compressed public key.

    Network-scoped encodings (WIF, addresses) are derived on demand through
    :mod:`defi_tx.core.address` and are never stored on the pair.

    Attributes:
        private_key: 32-byte big-endian scalar in ``[1, n-1]``.
        compressed: Whether the public key is used in its 33-byte form.
    """

    private_key: bytes = field(repr=False)
    compressed: bool = True

    def __post_init__(self) -> None:
        if len(self.private_key) != 32:
            msg = f"private key must be 32 bytes, got {len(self.private_key)}"
            raise ValueError(msg)
        if not 0 < int.from_bytes(self.private_key, "big") < _CURVE_ORDER:
            msg = "private key out of range"
            raise ValueError(msg)

    @classmethod
    def generate(cls) -> Self:
        """Create a fresh random key pair."""
        return cls(SigningKey.generate(curve=_CURVE).to_string())

    @classmethod
    def from_wif(cls, wif: str, network: NetworkParams) -> Self:
        """Decode a WIF string scoped to *network*."""
        from defi_tx.core.address import wif_to_privkey

        privkey, compressed = wif_to_privkey(wif, network)
        return cls(privkey, compressed=compressed)

    def to_wif(self, network: NetworkParams) -> str:
        """Encode the private key as WIF for *network*."""
        from defi_tx.core.address import privkey_to_wif

        return privkey_to_wif(self.private_key, network, compressed=self.compressed)

    @property
    def public_key(self) -> bytes:
        """The SEC-encoded public key."""
        return private_key_to_public_key(self.private_key, compressed=self.compressed)

    @property
    def pubkey_hash(self) -> bytes:
        """Hash160 of the public key."""
        return hash160(self.public_key)

    def sign(self, message_hash: bytes) -> bytes:
        """Deterministic low-S DER signature over *message_hash*."""
        return sign_message(self.private_key, message_hash)

    def verify(self, signature: bytes, message_hash: bytes) -> bool:
        """Verify *signature* over *message_hash* against this key."""
        return verify_signature(self.public_key, message_hash, signature)
