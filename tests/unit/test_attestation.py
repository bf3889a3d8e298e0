"""
Unit tests for attestations and version chains.

Tests cover:
1. Construction invariants
2. BAP serialization
3. AttestationLog version sequencing
4. History reconstruction
"""

import threading

import pytest

from cellchain.core.attestation import (
    ATTESTATION_CONTENT_TYPE,
    BAP_ID,
    AttestationLog,
    build_attestation,
    parse_attestation,
    serialize,
    walk_history,
)
from cellchain.core.envelope import Payload, decode_fields, encode_fields
from cellchain.errors import AttestationError, EncodingError


TXID_A = "aa" * 32
TXID_B = "bb" * 32
TXID_C = "cc" * 32


# =============================================================================
# Construction
# =============================================================================


class TestBuildAttestation:
    """Tests for the attestation constructor."""

    def test_first_version(self):
        att = build_attestation("sheet-1", 1, timestamp=1700000000)
        assert att.version == 1
        assert att.previous_record_ref is None
        assert att.is_genesis

    def test_later_version_links(self):
        att = build_attestation("sheet-1", 2, TXID_A, timestamp=1700000000)
        assert att.previous_record_ref == TXID_A

    def test_reference_is_normalized(self):
        att = build_attestation("sheet-1", 2, TXID_A.upper())
        assert att.previous_record_ref == TXID_A

    def test_timestamp_defaults_to_now(self):
        assert build_attestation("sheet-1", 1).timestamp > 1_600_000_000

    @pytest.mark.parametrize("version", [0, -1, True, "2"])
    def test_invalid_version(self, version):
        with pytest.raises(AttestationError):
            build_attestation("sheet-1", version)

    def test_first_version_cannot_link(self):
        with pytest.raises(AttestationError):
            build_attestation("sheet-1", 1, TXID_A)

    def test_later_version_must_link(self):
        with pytest.raises(AttestationError):
            build_attestation("sheet-1", 3)

    def test_reference_must_be_txid(self):
        with pytest.raises(AttestationError):
            build_attestation("sheet-1", 2, "not-a-txid")

    def test_reference_with_whitespace_rejected(self):
        with pytest.raises(AttestationError):
            build_attestation("sheet-1", 2, "aa" * 31 + "  ")

    def test_record_rejects_padded_txid(self):
        log = AttestationLog()
        with pytest.raises(AttestationError):
            log.record(log.next_attestation("sheet-1"), "bb" * 31 + "  ")

    def test_subject_required(self):
        with pytest.raises(AttestationError):
            build_attestation("", 1)

    def test_attestation_is_immutable(self):
        att = build_attestation("sheet-1", 1)
        with pytest.raises(AttributeError):
            att.version = 2


# =============================================================================
# Serialization
# =============================================================================


class TestSerialization:
    """Tests for the BAP field list."""

    def test_field_order(self):
        att = build_attestation("sheet-1", 2, TXID_A, timestamp=1700000000)
        payload = serialize(att)
        assert payload.content_type == ATTESTATION_CONTENT_TYPE
        assert decode_fields(payload.data) == [
            BAP_ID.encode(),
            b"ATTEST",
            b"sheet-1",
            b"SPREADSHEET",
            b"2",
            b"1700000000",
            TXID_A.encode(),
        ]

    def test_genesis_has_six_fields(self):
        payload = serialize(build_attestation("sheet-1", 1, timestamp=5))
        assert len(decode_fields(payload.data)) == 6

    def test_parse_roundtrip(self):
        att = build_attestation("sheet-1", 4, TXID_B, timestamp=1234)
        assert parse_attestation(serialize(att)) == att

    def test_parse_rejects_foreign_protocol(self):
        data = encode_fields([b"1Other", b"ATTEST", b"s", b"SPREADSHEET", b"1", b"0"])
        with pytest.raises(EncodingError):
            parse_attestation(Payload(data))

    def test_parse_rejects_wrong_field_count(self):
        with pytest.raises(EncodingError):
            parse_attestation(Payload(encode_fields([BAP_ID.encode(), b"ATTEST"])))

    def test_parse_rejects_non_numeric_version(self):
        data = encode_fields([BAP_ID.encode(), b"ATTEST", b"s", b"SPREADSHEET", b"two", b"0"])
        with pytest.raises(EncodingError):
            parse_attestation(Payload(data))


# =============================================================================
# Log
# =============================================================================


class TestAttestationLog:
    """Tests for per-subject version sequencing."""

    def test_kth_attestation_has_version_k(self):
        log = AttestationLog()
        refs = [TXID_A, TXID_B, TXID_C]
        previous = None
        for k, ref in enumerate(refs, start=1):
            att = log.next_attestation("sheet-1")
            assert att.version == k
            assert att.previous_record_ref == previous
            log.record(att, ref)
            previous = ref
        assert log.current_version("sheet-1") == 3
        assert log.tip("sheet-1") == TXID_C

    def test_subjects_are_independent(self):
        log = AttestationLog()
        a = log.next_attestation("sheet-a")
        b = log.next_attestation("sheet-b")
        assert a.version == b.version == 1

    def test_unrecorded_version_is_reissued(self):
        log = AttestationLog()
        log.record(log.next_attestation("sheet-1"), TXID_A)

        abandoned = log.next_attestation("sheet-1", timestamp=10)
        retry = log.next_attestation("sheet-1", timestamp=11)
        assert abandoned.version == retry.version == 2
        assert retry.previous_record_ref == TXID_A
        assert log.tip("sheet-1") == TXID_A
        assert log.current_version("sheet-1") == 1

    def test_only_first_record_of_a_version_wins(self):
        log = AttestationLog()
        a = log.next_attestation("sheet-1", timestamp=1)
        b = log.next_attestation("sheet-1", timestamp=2)
        log.record(a, TXID_A)
        with pytest.raises(AttestationError):
            log.record(b, TXID_B)
        assert log.tip("sheet-1") == TXID_A

    def test_record_rejects_wrong_link(self):
        log = AttestationLog()
        log.record(log.next_attestation("sheet-1"), TXID_A)
        with pytest.raises(AttestationError):
            log.record(build_attestation("sheet-1", 2, TXID_C), TXID_B)
        assert log.current_version("sheet-1") == 1

    def test_record_rejects_stale_version(self):
        log = AttestationLog()
        first = log.next_attestation("sheet-1")
        log.record(first, TXID_A)
        second = log.next_attestation("sheet-1")
        with pytest.raises(AttestationError):
            log.record(first, TXID_B)
        log.record(second, TXID_B)

    def test_record_rejects_bad_txid(self):
        log = AttestationLog()
        att = log.next_attestation("sheet-1")
        with pytest.raises(AttestationError):
            log.record(att, "xyz")

    def test_resume_continues_chain(self):
        log = AttestationLog()
        log.resume("sheet-1", 7, TXID_C)
        att = log.next_attestation("sheet-1")
        assert att.version == 8
        assert att.previous_record_ref == TXID_C

    def test_unknown_subject(self):
        log = AttestationLog()
        assert log.current_version("nothing") == 0
        assert log.tip("nothing") is None

    def test_concurrent_subjects_get_unique_versions(self):
        log = AttestationLog()
        results = []
        lock = threading.Lock()

        def worker(n):
            att = log.next_attestation(f"sheet-{n}")
            with lock:
                results.append(att.version)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results == [1] * 16


# =============================================================================
# History
# =============================================================================


class TestWalkHistory:
    """Tests for reconstructing history backward."""

    def _ledger(self):
        return {
            TXID_A: build_attestation("sheet-1", 1, timestamp=1),
            TXID_B: build_attestation("sheet-1", 2, TXID_A, timestamp=2),
            TXID_C: build_attestation("sheet-1", 3, TXID_B, timestamp=3),
        }

    def test_walks_to_genesis(self):
        ledger = self._ledger()
        history = walk_history(TXID_C, ledger.__getitem__)
        assert [a.version for a in history] == [1, 2, 3]

    def test_single_version(self):
        ledger = self._ledger()
        assert len(walk_history(TXID_A, ledger.__getitem__)) == 1

    def test_version_gap_detected(self):
        ledger = self._ledger()
        ledger[TXID_C] = build_attestation("sheet-1", 4, TXID_B, timestamp=3)
        with pytest.raises(AttestationError):
            walk_history(TXID_C, ledger.__getitem__)

    def test_subject_switch_detected(self):
        ledger = self._ledger()
        ledger[TXID_B] = build_attestation("sheet-2", 2, TXID_A, timestamp=2)
        with pytest.raises(AttestationError):
            walk_history(TXID_C, ledger.__getitem__)

    def test_missing_record_propagates(self):
        ledger = self._ledger()
        del ledger[TXID_A]
        with pytest.raises(KeyError):
            walk_history(TXID_C, ledger.__getitem__)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
