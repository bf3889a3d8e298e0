"""
Cryptographic primitives for cellchain.

This module provides:
- Hashing functions (SHA-256, double SHA-256, HASH160)
- Key handling on secp256k1 (public key derivation, compression)
- Digital signatures (ECDSA on secp256k1) and DER encoding

Design Notes:
-------------
The signer works on a fixed-width 32-byte digest; the caller picks the
digest algorithm (the transaction layer uses double SHA-256 sighashes,
document snapshots use SHA-256). Signer and verifier must agree.

``verify`` is a pure predicate: malformed signatures, keys and digests
yield ``False`` and never raise. ``sign`` with invalid key material raises
``SigningError``.
"""

import hashlib
import secrets
from dataclasses import dataclass, field
from typing import Optional, Tuple

from Crypto.Hash import RIPEMD160
from py_ecc.secp256k1 import secp256k1

from cellchain.errors import SigningError


# =============================================================================
# Constants
# =============================================================================

# secp256k1 curve order (number of points on the curve)
SECP256K1_ORDER = secp256k1.N

# secp256k1 field prime
SECP256K1_PRIME = secp256k1.P


# =============================================================================
# Hashing
# =============================================================================


def sha256(data: bytes) -> bytes:
    """
    Compute SHA-256 hash.

    Used for: snapshot signatures, Base58Check checksums.
    """
    return hashlib.sha256(data).digest()


def double_sha256(data: bytes) -> bytes:
    """
    Compute SHA-256(SHA-256(data)).

    Used for: transaction ids and sighash digests (Bitcoin convention).
    """
    return sha256(sha256(data))


def ripemd160(data: bytes) -> bytes:
    """Compute RIPEMD-160 hash."""
    return RIPEMD160.new(data).digest()


def hash160(data: bytes) -> bytes:
    """
    Compute RIPEMD-160(SHA-256(data)).

    Used for: P2PKH public key hashes.
    """
    return ripemd160(sha256(data))


# =============================================================================
# Keys
# =============================================================================


def is_valid_private_key(private_key: bytes) -> bool:
    """Check that a private key is 32 bytes encoding an integer in [1, order-1]."""
    if not isinstance(private_key, (bytes, bytearray)) or len(private_key) != 32:
        return False
    k = int.from_bytes(private_key, byteorder="big")
    return 0 < k < SECP256K1_ORDER


def _point_to_bytes(point: Tuple[int, int]) -> bytes:
    x_bytes = point[0].to_bytes(32, byteorder="big")
    y_bytes = point[1].to_bytes(32, byteorder="big")
    return x_bytes + y_bytes


def private_key_to_public_key(private_key: bytes) -> bytes:
    """
    Derive public key from private key.

    Args:
        private_key: 32-byte private key

    Returns:
        64-byte uncompressed public key (x || y, no 0x04 prefix)

    Raises:
        SigningError: private key is not a valid secp256k1 scalar
    """
    if not is_valid_private_key(private_key):
        raise SigningError("Invalid private key: must be 32 bytes in [1, order-1]")

    return _point_to_bytes(secp256k1.privtopub(bytes(private_key)))


def compress_public_key(public_key: bytes) -> bytes:
    """
    Serialize a public key in 33-byte compressed form.

    Accepts 64-byte (x || y), 65-byte (0x04 || x || y) or an already
    compressed key.
    """
    if len(public_key) == 33 and public_key[0] in (2, 3):
        return bytes(public_key)
    if len(public_key) == 65 and public_key[0] == 4:
        public_key = public_key[1:]
    if len(public_key) != 64:
        raise ValueError(f"Public key must be 33, 64 or 65 bytes, got {len(public_key)}")

    y = int.from_bytes(public_key[32:], byteorder="big")
    prefix = b"\x02" if y % 2 == 0 else b"\x03"
    return prefix + bytes(public_key[:32])


def decompress_public_key(public_key: bytes) -> bytes:
    """
    Expand a public key to 64-byte (x || y) form.

    Raises:
        ValueError: bytes do not encode a point on the curve
    """
    if len(public_key) == 64:
        point = (
            int.from_bytes(public_key[:32], byteorder="big"),
            int.from_bytes(public_key[32:], byteorder="big"),
        )
    elif len(public_key) == 65 and public_key[0] == 4:
        return decompress_public_key(public_key[1:])
    elif len(public_key) == 33 and public_key[0] in (2, 3):
        x = int.from_bytes(public_key[1:], byteorder="big")
        y_squared = (pow(x, 3, SECP256K1_PRIME) + 7) % SECP256K1_PRIME
        y = pow(y_squared, (SECP256K1_PRIME + 1) // 4, SECP256K1_PRIME)
        if y % 2 != public_key[0] % 2:
            y = SECP256K1_PRIME - y
        point = (x, y)
    else:
        raise ValueError(f"Unsupported public key length: {len(public_key)}")

    x, y = point
    if x >= SECP256K1_PRIME or y >= SECP256K1_PRIME:
        raise ValueError("Public key coordinate out of field range")
    if (y * y - pow(x, 3, SECP256K1_PRIME) - 7) % SECP256K1_PRIME != 0:
        raise ValueError("Public key is not on secp256k1")

    return _point_to_bytes(point)


@dataclass(frozen=True)
class KeyPair:
    """
    An ECDSA keypair on secp256k1.

    The private key is excluded from repr so a KeyPair can appear in logs
    and tracebacks without leaking secret material.

    Attributes:
        private_key: 32-byte secret key (integer in [1, order-1])
        public_key: 64-byte uncompressed public key (x || y coordinates)
    """
    private_key: bytes = field(repr=False)  # 32 bytes
    public_key: bytes                       # 64 bytes

    @classmethod
    def from_private_key(cls, private_key: bytes) -> "KeyPair":
        """Build a keypair, deriving the public half."""
        return cls(
            private_key=bytes(private_key),
            public_key=private_key_to_public_key(private_key),
        )

    @property
    def compressed_public_key(self) -> bytes:
        """33-byte SEC1 compressed public key."""
        return compress_public_key(self.public_key)

    @property
    def public_key_hex(self) -> str:
        """Compressed public key as hex string."""
        return self.compressed_public_key.hex()

    @property
    def public_key_hash(self) -> bytes:
        """HASH160 of the compressed public key."""
        return hash160(self.compressed_public_key)

    def address(self, network: str = "mainnet") -> str:
        """P2PKH address of the compressed public key."""
        from cellchain.crypto.address import public_key_to_address

        return public_key_to_address(self.public_key, network=network)


def generate_keypair() -> KeyPair:
    """
    Generate a new random keypair.

    Uses cryptographically secure random number generator.
    """
    private_key_int = secrets.randbelow(SECP256K1_ORDER - 1) + 1
    return KeyPair.from_private_key(private_key_int.to_bytes(32, byteorder="big"))


# =============================================================================
# Digital Signatures (ECDSA)
# =============================================================================


def sign(message_hash: bytes, private_key: bytes) -> bytes:
    """
    Sign a message hash using ECDSA on secp256k1.

    Args:
        message_hash: 32-byte hash of the message to sign
        private_key: 32-byte private key

    Returns:
        64-byte signature (r || s, each 32 bytes), s in the lower half order

    Raises:
        SigningError: digest is not 32 bytes or the key is not a valid scalar

    Note: The nonce is deterministic (RFC 6979 style), so signing the same
    digest with the same key always yields the same signature.
    """
    if not isinstance(message_hash, (bytes, bytearray)) or len(message_hash) != 32:
        raise SigningError("Message hash must be 32 bytes")
    if not is_valid_private_key(private_key):
        raise SigningError("Invalid private key: must be 32 bytes in [1, order-1]")

    _, r, s = secp256k1.ecdsa_raw_sign(bytes(message_hash), bytes(private_key))

    # Normalize s to lower half of curve order (BIP 62)
    if s > SECP256K1_ORDER // 2:
        s = SECP256K1_ORDER - s

    return r.to_bytes(32, byteorder="big") + s.to_bytes(32, byteorder="big")


def verify(message_hash: bytes, signature: bytes, public_key: bytes) -> bool:
    """
    Verify an ECDSA signature.

    Args:
        message_hash: 32-byte hash of the signed message
        signature: 64-byte signature (r || s)
        public_key: public key (64-byte x || y, or 33-byte compressed)

    Returns:
        True if signature is valid, False otherwise (never raises)
    """
    try:
        if len(message_hash) != 32 or len(signature) != 64:
            return False

        expected = decompress_public_key(public_key)
        public_key_point = (
            int.from_bytes(expected[:32], byteorder="big"),
            int.from_bytes(expected[32:], byteorder="big"),
        )

        r = int.from_bytes(signature[:32], byteorder="big")
        s = int.from_bytes(signature[32:], byteorder="big")
        if r < 1 or r >= SECP256K1_ORDER:
            return False
        if s < 1 or s >= SECP256K1_ORDER:
            return False

        # Recover the signing key for both parities and compare
        for v in (27, 28):
            try:
                recovered = secp256k1.ecdsa_raw_recover(bytes(message_hash), (v, r, s))
            except (ValueError, ZeroDivisionError, TypeError):
                continue
            if recovered == public_key_point:
                return True

        return False

    except (TypeError, ValueError):
        return False


def signature_to_der(signature: bytes) -> bytes:
    """
    Encode a 64-byte (r || s) signature as strict DER.

    Used for: unlocking scripts.
    """
    if len(signature) != 64:
        raise ValueError("Signature must be 64 bytes")

    def encode_int(value: bytes) -> bytes:
        value = value.lstrip(b"\x00") or b"\x00"
        if value[0] & 0x80:
            value = b"\x00" + value
        return b"\x02" + bytes([len(value)]) + value

    body = encode_int(signature[:32]) + encode_int(signature[32:])
    return b"\x30" + bytes([len(body)]) + body


def signature_from_der(der: bytes) -> Optional[bytes]:
    """Decode a DER signature back to 64-byte (r || s), or None if malformed."""
    try:
        if der[0] != 0x30 or der[1] != len(der) - 2:
            return None
        offset = 2
        parts = []
        for _ in range(2):
            if der[offset] != 0x02:
                return None
            length = der[offset + 1]
            value = der[offset + 2:offset + 2 + length]
            if len(value) != length or length == 0:
                return None
            parts.append(int.from_bytes(value, byteorder="big"))
            offset += 2 + length
        if offset != len(der):
            return None
        r, s = parts
        if r >= 2**256 or s >= 2**256:
            return None
        return r.to_bytes(32, byteorder="big") + s.to_bytes(32, byteorder="big")
    except IndexError:
        return None


# =============================================================================
# Utility Functions
# =============================================================================


def bytes_to_hex(data: bytes) -> str:
    """Convert bytes to hex string with 0x prefix."""
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """Convert hex string (with or without 0x prefix) to bytes."""
    if hex_str.startswith("0x") or hex_str.startswith("0X"):
        hex_str = hex_str[2:]
    return bytes.fromhex(hex_str)
