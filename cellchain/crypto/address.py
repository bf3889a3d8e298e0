"""
P2PKH address encoding.

address = Base58Check(version || HASH160(compressed_public_key))

Version bytes follow the Bitcoin/BSV convention: 0x00 on mainnet,
0x6f on testnet. The checksum is the first four bytes of the double
SHA-256 of the versioned payload.
"""

import base58

from cellchain.crypto import compress_public_key, hash160


ADDRESS_VERSIONS = {
    "mainnet": 0x00,
    "testnet": 0x6F,
}


def _version_byte(network: str) -> int:
    try:
        return ADDRESS_VERSIONS[network]
    except KeyError:
        raise ValueError(f"Unknown network: {network!r}") from None


def hash160_to_address(pubkey_hash: bytes, network: str = "mainnet") -> str:
    """Encode a 20-byte public key hash as a P2PKH address."""
    if len(pubkey_hash) != 20:
        raise ValueError(f"Public key hash must be 20 bytes, got {len(pubkey_hash)}")
    payload = bytes([_version_byte(network)]) + pubkey_hash
    return base58.b58encode_check(payload).decode("ascii")


def public_key_to_address(public_key: bytes, network: str = "mainnet") -> str:
    """
    Derive the P2PKH address of a public key.

    Args:
        public_key: 64-byte, 65-byte or 33-byte public key
        network: "mainnet" or "testnet"

    Returns:
        Base58Check address string
    """
    return hash160_to_address(hash160(compress_public_key(public_key)), network)


def address_to_hash160(address: str, network: str = "mainnet") -> bytes:
    """
    Decode a P2PKH address to its public key hash.

    Raises:
        ValueError: bad characters, checksum mismatch, wrong length or network
    """
    try:
        payload = base58.b58decode_check(address)
    except ValueError as exc:
        raise ValueError(f"Invalid address: {exc}") from exc

    if len(payload) != 21:
        raise ValueError(f"Invalid address payload length: {len(payload)}")
    if payload[0] != _version_byte(network):
        raise ValueError(f"Address version {payload[0]:#04x} does not match {network}")
    return payload[1:]


def is_valid_address(address: str, network: str = "mainnet") -> bool:
    """Check if string is a valid P2PKH address for the network."""
    if not isinstance(address, str):
        return False
    try:
        address_to_hash160(address, network)
        return True
    except ValueError:
        return False
