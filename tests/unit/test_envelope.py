"""
Unit tests for the envelope codec and script primitives.

Tests cover:
1. Chunking and data-carrier reassembly
2. Data-carrier scripts
3. Field lists
4. Inscription envelopes
5. Pushdata and varint encoding
"""

import pytest

from cellchain.core.config import LedgerConfig
from cellchain.core.envelope import (
    EnvelopeCodec,
    Payload,
    chunk_payload,
    data_carrier_scripts,
    decode_data_carrier,
    decode_data_carrier_scripts,
    decode_fields,
    decode_fields_script,
    decode_inscription,
    encode_data_carrier,
    encode_fields,
    encode_inscription,
    fields_script,
)
from cellchain.core.script import (
    Opcode,
    encode_varint,
    p2pkh_script,
    parse_script,
    push_data,
    read_varint,
)
from cellchain.errors import ConfigurationError, EncodingError


# =============================================================================
# Data carrier
# =============================================================================


class TestDataCarrier:
    """Tests for chunked data-carrier encoding."""

    def test_500_bytes_in_three_chunks(self):
        data = bytes(range(250)) * 2
        envelope = encode_data_carrier(Payload(data), chunk_size=220)
        assert [len(c) for c in envelope.chunks] == [220, 220, 60]
        assert decode_data_carrier(envelope.chunks) == data

    def test_empty_payload_has_no_chunks(self):
        envelope = encode_data_carrier(Payload(b""))
        assert envelope.chunks == ()
        assert decode_data_carrier(envelope.chunks) == b""

    @pytest.mark.parametrize("length", [1, 219, 220, 221, 440, 441, 660])
    def test_roundtrip_and_minimal_chunk_count(self, length):
        data = bytes(i % 256 for i in range(length))
        envelope = encode_data_carrier(Payload(data), chunk_size=220)
        assert decode_data_carrier(envelope.chunks) == data
        assert len(envelope) == -(-length // 220)
        assert all(envelope.chunks)

    def test_exact_multiple_has_no_trailing_chunk(self):
        chunks = chunk_payload(b"x" * 440, 220)
        assert len(chunks) == 2
        assert chunks[-1] != b""

    def test_chunk_size_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            chunk_payload(b"abc", 0)

    def test_payload_over_limit_rejected(self):
        with pytest.raises(EncodingError):
            encode_data_carrier(Payload(b"x" * 11), max_payload_bytes=10)

    def test_scripts_roundtrip(self):
        data = b"spreadsheet" * 50
        scripts = data_carrier_scripts(encode_data_carrier(Payload(data)))
        assert all(s[:2] == b"\x00\x6a" for s in scripts)
        assert decode_data_carrier_scripts(scripts) == data

    def test_non_carrier_script_rejected(self):
        with pytest.raises(EncodingError):
            decode_data_carrier_scripts([p2pkh_script(bytes(20))])

    def test_multi_push_carrier_rejected(self):
        with pytest.raises(EncodingError):
            decode_data_carrier_scripts([fields_script(encode_fields([b"a", b"b"]))])

    def test_envelope_keeps_content_type(self):
        envelope = encode_data_carrier(Payload(b"{}", "application/json"))
        assert envelope.content_type == "application/json"


class TestPayload:
    """Tests for payload validation."""

    def test_rejects_non_bytes(self):
        with pytest.raises(EncodingError):
            Payload("text")

    @pytest.mark.parametrize("content_type", ["", "json", "a/b/c d"])
    def test_rejects_bad_content_type(self, content_type):
        with pytest.raises(EncodingError):
            Payload(b"x", content_type)

    def test_accepts_parameters(self):
        assert Payload(b"x", "text/plain; charset=utf-8").content_type.startswith("text/plain")


# =============================================================================
# Fields
# =============================================================================


class TestFields:
    """Tests for field-list encoding."""

    def test_fields_roundtrip(self):
        fields = [b"1BAP", b"", b"x" * 80, b"y" * 300]
        assert decode_fields(encode_fields(fields)) == fields

    def test_fields_script_roundtrip(self):
        fields = [b"one", b"two"]
        assert decode_fields_script(fields_script(encode_fields(fields))) == fields

    def test_non_push_in_fields_rejected(self):
        with pytest.raises(EncodingError):
            decode_fields(bytes([Opcode.OP_DUP]))

    def test_truncated_fields_rejected(self):
        with pytest.raises(EncodingError):
            decode_fields(b"\x05ab")


# =============================================================================
# Inscription
# =============================================================================


class TestInscription:
    """Tests for ord inscription envelopes."""

    def test_layout(self):
        script = encode_inscription(Payload(b"hi", "text/plain"))
        tokens = parse_script(script)
        assert tokens[0].opcode == Opcode.OP_0
        assert tokens[1].opcode == Opcode.OP_IF
        assert tokens[2].data == b"ord"
        assert tokens[3].opcode == Opcode.OP_1
        assert tokens[4].data == b"text/plain"
        assert tokens[5].opcode == Opcode.OP_0
        assert tokens[6].data == b"hi"
        assert tokens[7].opcode == Opcode.OP_ENDIF

    def test_roundtrip(self):
        payload = Payload(b'{"title": "Budget"}', "application/json")
        assert decode_inscription(encode_inscription(payload)) == payload

    def test_empty_body(self):
        payload = Payload(b"", "text/plain")
        assert decode_inscription(encode_inscription(payload)) == payload

    def test_trailing_lock_is_ignored(self):
        payload = Payload(b"data", "text/plain")
        script = encode_inscription(payload) + p2pkh_script(bytes(20))
        assert decode_inscription(script) == payload

    def test_marker_mismatch_raises(self):
        script = encode_inscription(Payload(b"data", "text/plain")).replace(b"ord", b"xyz", 1)
        with pytest.raises(EncodingError, match="marker"):
            decode_inscription(script)

    def test_data_carrier_is_not_inscription(self):
        with pytest.raises(EncodingError):
            decode_inscription(data_carrier_scripts(encode_data_carrier(Payload(b"abc")))[0])

    def test_truncated_envelope_raises(self):
        script = encode_inscription(Payload(b"data", "text/plain"))
        with pytest.raises(EncodingError):
            decode_inscription(script[:-1])

    def test_garbage_raises_encoding_error(self):
        with pytest.raises(EncodingError):
            decode_inscription(b"\x4e\xff\xff")


# =============================================================================
# Codec
# =============================================================================


class TestEnvelopeCodec:
    """Tests for the config-bound codec."""

    def test_uses_config_chunk_size(self):
        codec = EnvelopeCodec(LedgerConfig(chunk_size=100))
        assert len(codec.encode(Payload(b"x" * 250))) == 3

    def test_encode_decode(self):
        codec = EnvelopeCodec()
        payload = Payload(b"z" * 1000, "application/json")
        assert codec.decode(codec.encode(payload)) == payload

    def test_limit_from_config(self):
        codec = EnvelopeCodec(LedgerConfig(max_payload_bytes=4))
        with pytest.raises(EncodingError):
            codec.scripts(Payload(b"12345"))
        with pytest.raises(EncodingError):
            codec.inscribe(Payload(b"12345"))

    def test_read_inscription(self):
        codec = EnvelopeCodec()
        payload = Payload(b"abc", "text/plain")
        assert codec.read_inscription(codec.inscribe(payload)) == payload


# =============================================================================
# Script primitives
# =============================================================================


class TestScript:
    """Tests for pushes and varints."""

    @pytest.mark.parametrize(
        "length,prefix",
        [(0, b"\x00"), (1, b"\x01"), (75, b"\x4b"), (76, b"\x4c\x4c"), (255, b"\x4c\xff"), (256, b"\x4d\x00\x01")],
    )
    def test_push_prefixes(self, length, prefix):
        assert push_data(b"a" * length).startswith(prefix)

    def test_pushdata4(self):
        pushed = push_data(b"a" * 70000)
        assert pushed[0] == Opcode.OP_PUSHDATA4
        assert parse_script(pushed)[0].data == b"a" * 70000

    @pytest.mark.parametrize("value", [0, 252, 253, 0xFFFF, 0x10000, 0xFFFFFFFF, 0x100000000])
    def test_varint_roundtrip(self, value):
        encoded = encode_varint(value)
        assert read_varint(encoded) == (value, len(encoded))

    def test_p2pkh_layout(self):
        script = p2pkh_script(bytes(20))
        assert len(script) == 25
        assert script[:3] == b"\x76\xa9\x14"
        assert script[-2:] == b"\x88\xac"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
