"""
Unit tests for cryptographic primitives.

Tests cover:
1. Key generation and public key forms
2. Signing and verification
3. DER encoding
4. Hashing functions
5. Address encoding
"""

import pytest

from cellchain.crypto import (
    KeyPair,
    SECP256K1_ORDER,
    bytes_to_hex,
    compress_public_key,
    decompress_public_key,
    double_sha256,
    generate_keypair,
    hash160,
    hex_to_bytes,
    private_key_to_public_key,
    sha256,
    sign,
    signature_from_der,
    signature_to_der,
    verify,
)
from cellchain.crypto.address import (
    address_to_hash160,
    hash160_to_address,
    is_valid_address,
    public_key_to_address,
)
from cellchain.errors import SigningError


ONE = (1).to_bytes(32, byteorder="big")

# Generator point G in compressed form
G_COMPRESSED = bytes.fromhex(
    "0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
)


class TestKeyGeneration:
    """Tests for key generation."""

    def test_keypair_generation_produces_valid_lengths(self):
        """KeyPair should have correct field lengths."""
        kp = generate_keypair()
        assert len(kp.private_key) == 32
        assert len(kp.public_key) == 64
        assert len(kp.compressed_public_key) == 33

    def test_keypairs_are_unique(self):
        """Each keypair should be different."""
        kp1 = generate_keypair()
        kp2 = generate_keypair()
        assert kp1.private_key != kp2.private_key
        assert kp1.public_key != kp2.public_key

    def test_derive_public_key_from_private(self):
        """Should derive correct public key from private key."""
        kp = generate_keypair()
        assert private_key_to_public_key(kp.private_key) == kp.public_key

    def test_private_key_one_is_generator(self):
        """Private key 1 maps to the generator point."""
        kp = KeyPair.from_private_key(ONE)
        assert kp.compressed_public_key == G_COMPRESSED

    def test_repr_hides_private_key(self):
        """Private key must not leak through repr."""
        kp = generate_keypair()
        assert kp.private_key.hex() not in repr(kp)
        assert "private_key" not in repr(kp)

    def test_compress_roundtrip(self):
        """Decompressing a compressed key gives back the full key."""
        kp = generate_keypair()
        assert decompress_public_key(compress_public_key(kp.public_key)) == kp.public_key

    def test_decompress_rejects_off_curve_point(self):
        with pytest.raises(ValueError):
            decompress_public_key(bytes(64))

    @pytest.mark.parametrize("bad", [bytes(32), SECP256K1_ORDER.to_bytes(32, "big"), b"\x01" * 31])
    def test_invalid_private_key_rejected(self, bad):
        with pytest.raises(SigningError):
            private_key_to_public_key(bad)


class TestSigning:
    """Tests for ECDSA signing."""

    def test_sign_produces_valid_signature(self):
        """Signature should be 64 bytes."""
        kp = generate_keypair()
        sig = sign(sha256(b"test message"), kp.private_key)
        assert len(sig) == 64

    def test_signature_is_low_s(self):
        kp = generate_keypair()
        sig = sign(sha256(b"low s"), kp.private_key)
        assert int.from_bytes(sig[32:], "big") <= SECP256K1_ORDER // 2

    def test_signing_is_deterministic(self):
        kp = generate_keypair()
        msg_hash = sha256(b"same digest")
        assert sign(msg_hash, kp.private_key) == sign(msg_hash, kp.private_key)

    def test_verify_valid_signature(self):
        """Valid signature should verify."""
        kp = generate_keypair()
        msg_hash = sha256(b"test message")
        sig = sign(msg_hash, kp.private_key)
        assert verify(msg_hash, sig, kp.public_key)

    def test_verify_accepts_compressed_key(self):
        kp = generate_keypair()
        msg_hash = sha256(b"compressed")
        sig = sign(msg_hash, kp.private_key)
        assert verify(msg_hash, sig, kp.compressed_public_key)

    def test_verify_wrong_message_fails(self):
        """Signature should fail for different message."""
        kp = generate_keypair()
        sig = sign(sha256(b"message 1"), kp.private_key)
        assert not verify(sha256(b"message 2"), sig, kp.public_key)

    def test_verify_wrong_key_fails(self):
        """Signature should fail with wrong public key."""
        kp1 = generate_keypair()
        kp2 = generate_keypair()
        msg = sha256(b"test")
        sig = sign(msg, kp1.private_key)
        assert not verify(msg, sig, kp2.public_key)

    @pytest.mark.parametrize("bit", [0, 100, 255, 256, 511])
    def test_signature_bit_flip_fails(self, bit):
        kp = generate_keypair()
        msg = sha256(b"bit flip")
        sig = bytearray(sign(msg, kp.private_key))
        sig[bit // 8] ^= 1 << (bit % 8)
        assert not verify(msg, bytes(sig), kp.public_key)

    @pytest.mark.parametrize("bit", [0, 77, 255])
    def test_digest_bit_flip_fails(self, bit):
        kp = generate_keypair()
        msg = bytearray(sha256(b"digest flip"))
        sig = sign(bytes(msg), kp.private_key)
        msg[bit // 8] ^= 1 << (bit % 8)
        assert not verify(bytes(msg), sig, kp.public_key)

    @pytest.mark.parametrize(
        "digest,signature,public_key",
        [
            (b"short", bytes(64), bytes(64)),
            (bytes(32), b"short", bytes(64)),
            (bytes(32), bytes(64), b"junk"),
            (bytes(32), bytes(64), bytes(64)),
            (None, None, None),
        ],
    )
    def test_verify_never_raises_on_garbage(self, digest, signature, public_key):
        assert verify(digest, signature, public_key) is False

    def test_sign_with_zero_key_raises(self):
        with pytest.raises(SigningError):
            sign(sha256(b"x"), bytes(32))

    def test_sign_with_out_of_range_key_raises(self):
        with pytest.raises(SigningError):
            sign(sha256(b"x"), SECP256K1_ORDER.to_bytes(32, "big"))

    def test_sign_wrong_digest_length_raises(self):
        with pytest.raises(SigningError):
            sign(b"not a digest", ONE)

    def test_signing_error_hides_key(self):
        bad_key = b"\xff" * 32
        with pytest.raises(SigningError) as exc_info:
            sign(sha256(b"x"), bad_key)
        assert bad_key.hex() not in str(exc_info.value)


class TestDER:
    """Tests for DER signature encoding."""

    def test_der_roundtrip(self):
        kp = generate_keypair()
        sig = sign(sha256(b"der"), kp.private_key)
        der = signature_to_der(sig)
        assert der[0] == 0x30
        assert signature_from_der(der) == sig

    def test_der_pads_high_bit(self):
        sig = (b"\x80" + bytes(31)) + (b"\x01" + bytes(31))
        der = signature_to_der(sig)
        # r gets a leading zero byte, s does not
        assert der[2:5] == b"\x02\x21\x00"

    def test_malformed_der_is_none(self):
        assert signature_from_der(b"\x30\x02\x02") is None
        assert signature_from_der(b"") is None


class TestHashing:
    """Tests for hashing functions."""

    def test_sha256_known_value(self):
        assert sha256(b"").hex() == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_double_sha256(self):
        """Double SHA256 should hash twice."""
        assert double_sha256(b"test") == sha256(sha256(b"test"))

    def test_hash160_length(self):
        assert len(hash160(b"test")) == 20


class TestAddress:
    """Tests for P2PKH address encoding."""

    def test_known_address_for_private_key_one(self):
        kp = KeyPair.from_private_key(ONE)
        assert kp.address() == "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"

    def test_address_accepts_any_public_key_form(self):
        kp = generate_keypair()
        assert public_key_to_address(kp.public_key) == public_key_to_address(kp.compressed_public_key)

    def test_testnet_address_prefix(self):
        kp = KeyPair.from_private_key(ONE)
        assert kp.address("testnet")[0] in "mn"

    def test_address_decodes_to_hash160(self):
        kp = generate_keypair()
        assert address_to_hash160(kp.address()) == kp.public_key_hash

    def test_hash160_to_address_rejects_bad_length(self):
        with pytest.raises(ValueError):
            hash160_to_address(bytes(19))

    def test_is_valid_address(self):
        address = KeyPair.from_private_key(ONE).address()
        assert is_valid_address(address)
        assert not is_valid_address(address[:-1] + ("J" if address[-1] != "J" else "K"))
        assert not is_valid_address(address, network="testnet")
        assert not is_valid_address("0OIl")
        assert not is_valid_address(None)


class TestUtility:
    """Tests for utility functions."""

    def test_bytes_to_hex(self):
        """Should convert to 0x-prefixed hex."""
        assert bytes_to_hex(bytes([0xde, 0xad, 0xbe, 0xef])) == "0xdeadbeef"

    def test_hex_to_bytes(self):
        """Should handle both 0x prefix and plain hex."""
        assert hex_to_bytes("0xdeadbeef") == bytes([0xde, 0xad, 0xbe, 0xef])
        assert hex_to_bytes("deadbeef") == bytes([0xde, 0xad, 0xbe, 0xef])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
