"""
Attestation - versioned, append-only record chains.

Conceptual Background:
---------------------
Every saved version of a subject (a spreadsheet) is announced by an
attestation carried in a ledger transaction. Version k > 1 references the
txid of the transaction that carried version k - 1:

    v1 (tx A)  <-  v2 (tx B, prev=A)  <-  v3 (tx C, prev=B)

This is a singly-linked list whose pointers are transaction ids. The full
history is reconstructed by following references backward from the tip;
no central index is needed, and rewriting an old version would change its
txid and break every later link.

Wire format (BAP style), one push per field in a single data carrier:

    BAP_ID | "ATTEST" | subject_id | "SPREADSHEET" | version | timestamp [| prev_txid]
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from cellchain.core.envelope import Payload, decode_fields, encode_fields
from cellchain.errors import AttestationError, EncodingError
from cellchain.utils.logger import get_logger
from cellchain.utils.validation import validate_string, validate_txid

logger = get_logger("attestation")


# =============================================================================
# Constants
# =============================================================================

BAP_ID = "1BAPSuaPnfGnSBM3GLV9yhxUdYe4vGbdMT"
BAP_ATTESTATION_TYPE = "ATTEST"
BAP_SUBJECT_TYPE = "SPREADSHEET"

ATTESTATION_CONTENT_TYPE = "application/x-bap-attestation"


# =============================================================================
# Attestation
# =============================================================================


@dataclass(frozen=True)
class Attestation:
    """
    One link in a subject's version chain.

    Attributes:
        subject_id: Identifier of the attested document
        version: 1-based version number
        timestamp: Unix seconds when the attestation was built
        previous_record_ref: Txid carrying the previous version (None for v1)
    """
    subject_id: str
    version: int
    timestamp: int
    previous_record_ref: Optional[str] = None

    def __post_init__(self):
        valid, err = validate_string(self.subject_id, "subject_id")
        if not valid:
            raise AttestationError(err)
        if not isinstance(self.version, int) or isinstance(self.version, bool) or self.version < 1:
            raise AttestationError(f"version must be an int >= 1, got {self.version!r}")
        if not isinstance(self.timestamp, int) or self.timestamp < 0:
            raise AttestationError(f"timestamp must be a non-negative int, got {self.timestamp!r}")

        if self.version == 1 and self.previous_record_ref is not None:
            raise AttestationError("version 1 cannot reference a previous record")
        if self.version > 1:
            if self.previous_record_ref is None:
                raise AttestationError(f"version {self.version} must reference the previous record")
            valid, err = validate_txid(self.previous_record_ref, "previous_record_ref")
            if not valid:
                raise AttestationError(err)

    @property
    def is_genesis(self) -> bool:
        return self.version == 1


def build_attestation(
    subject_id: str,
    version: int,
    previous_record_ref: Optional[str] = None,
    timestamp: Optional[int] = None,
) -> Attestation:
    """
    Build an attestation, enforcing the chain invariants.

    Raises:
        AttestationError: version < 1, version 1 with a reference, or
            version > 1 without a valid txid reference
    """
    if timestamp is None:
        timestamp = int(time.time())
    return Attestation(
        subject_id=subject_id,
        version=version,
        timestamp=timestamp,
        previous_record_ref=previous_record_ref.lower() if previous_record_ref else None,
    )


def serialize(attestation: Attestation) -> Payload:
    """Serialize to the BAP field list, ready for the envelope codec."""
    fields = [
        BAP_ID,
        BAP_ATTESTATION_TYPE,
        attestation.subject_id,
        BAP_SUBJECT_TYPE,
        str(attestation.version),
        str(attestation.timestamp),
    ]
    if attestation.previous_record_ref is not None:
        fields.append(attestation.previous_record_ref)

    return Payload(
        data=encode_fields([field.encode("utf-8") for field in fields]),
        content_type=ATTESTATION_CONTENT_TYPE,
    )


def parse_attestation(payload: Payload) -> Attestation:
    """
    Inverse of ``serialize``.

    Raises:
        EncodingError: not a BAP attestation field list
        AttestationError: fields decode but violate chain invariants
    """
    try:
        fields = [field.decode("utf-8") for field in decode_fields(payload.data)]
    except UnicodeDecodeError as exc:
        raise EncodingError("Attestation fields are not UTF-8") from exc

    if len(fields) not in (6, 7):
        raise EncodingError(f"Attestation must have 6 or 7 fields, got {len(fields)}")
    if fields[0] != BAP_ID or fields[1] != BAP_ATTESTATION_TYPE or fields[3] != BAP_SUBJECT_TYPE:
        raise EncodingError("Not a spreadsheet BAP attestation")

    try:
        version = int(fields[4])
        timestamp = int(fields[5])
    except ValueError as exc:
        raise EncodingError(f"Non-numeric attestation field: {exc}") from exc

    return Attestation(
        subject_id=fields[2],
        version=version,
        timestamp=timestamp,
        previous_record_ref=fields[6] if len(fields) == 7 else None,
    )


# =============================================================================
# Attestation Log
# =============================================================================


@dataclass
class _SubjectState:
    version: int = 0
    tip_ref: Optional[str] = None


class AttestationLog:
    """
    Tracks the version chain of each subject for this process.

    The state of a subject only moves when ``record`` is called with the
    txid that carries an attestation. ``next_attestation`` builds version
    ``recorded + 1`` linking to the recorded tip and changes nothing, so a
    build that fails before broadcast can simply ask again and receive the
    same version with the same link.

    Thread-safe: a single lock guards all subjects. If two callers issue the
    same version, the first ``record`` wins and the second is rejected.
    """

    def __init__(self):
        self._subjects: Dict[str, _SubjectState] = {}
        self._lock = threading.Lock()

    def next_attestation(self, subject_id: str, timestamp: Optional[int] = None) -> Attestation:
        """Build the attestation that would follow the recorded tip."""
        with self._lock:
            state = self._subjects.get(subject_id, _SubjectState())
            version, tip_ref = state.version + 1, state.tip_ref

        attestation = build_attestation(subject_id, version, tip_ref, timestamp)
        logger.debug(f"Built attestation {subject_id!r} v{version}")
        return attestation

    def record(self, attestation: Attestation, tx_ref: str) -> None:
        """
        Record the txid carrying ``attestation`` as the subject's new tip.

        Raises:
            AttestationError: bad txid, or the attestation does not directly
                follow the recorded tip
        """
        valid, err = validate_txid(tx_ref, "tx_ref")
        if not valid:
            raise AttestationError(err)

        with self._lock:
            state = self._subjects.setdefault(attestation.subject_id, _SubjectState())
            if (
                attestation.version != state.version + 1
                or attestation.previous_record_ref != state.tip_ref
            ):
                raise AttestationError(
                    f"Attestation v{attestation.version} of {attestation.subject_id!r} "
                    f"does not follow recorded v{state.version}"
                )
            state.version = attestation.version
            state.tip_ref = tx_ref.lower()

        logger.info(f"Recorded {attestation.subject_id!r} v{attestation.version} in {tx_ref}")

    def resume(self, subject_id: str, version: int, tip_ref: str) -> None:
        """
        Seed a subject's state from a chain already on the ledger.

        Args:
            subject_id: Subject whose chain is resumed
            version: Latest version found on the ledger
            tip_ref: Txid carrying that version
        """
        if not isinstance(version, int) or version < 1:
            raise AttestationError(f"version must be an int >= 1, got {version!r}")
        valid, err = validate_txid(tip_ref, "tip_ref")
        if not valid:
            raise AttestationError(err)
        with self._lock:
            self._subjects[subject_id] = _SubjectState(version=version, tip_ref=tip_ref.lower())

    def current_version(self, subject_id: str) -> int:
        with self._lock:
            state = self._subjects.get(subject_id)
            return state.version if state else 0

    def tip(self, subject_id: str) -> Optional[str]:
        with self._lock:
            state = self._subjects.get(subject_id)
            return state.tip_ref if state else None


# =============================================================================
# History
# =============================================================================


def walk_history(tip_ref: str, fetch: Callable[[str], Attestation]) -> List[Attestation]:
    """
    Reconstruct a subject's history by following references backward.

    Args:
        tip_ref: Txid of the transaction carrying the latest attestation
        fetch: Looks up the attestation carried by a txid

    Returns:
        Attestations ordered oldest (v1) first

    Raises:
        AttestationError: versions do not decrease by one, or the subject
            changes along the chain
    """
    chain = [fetch(tip_ref)]
    while not chain[-1].is_genesis:
        current = chain[-1]
        previous = fetch(current.previous_record_ref)
        if previous.subject_id != current.subject_id:
            raise AttestationError(
                f"Chain broken at {current.previous_record_ref}: "
                f"subject {previous.subject_id!r} != {current.subject_id!r}"
            )
        if previous.version != current.version - 1:
            raise AttestationError(
                f"Chain broken at {current.previous_record_ref}: "
                f"version {previous.version} does not precede {current.version}"
            )
        chain.append(previous)

    chain.reverse()
    return chain
