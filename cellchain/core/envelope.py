"""
Envelope codec - fitting payloads into ledger outputs.

Two modes share one chunking primitive:

1. Data carrier
   A payload is split into chunks of at most ``chunk_size`` bytes (220 by
   default), one ``OP_FALSE OP_RETURN <chunk>`` output per chunk. Decoding
   concatenates chunks in output order. The chunk count is minimal,
   ``ceil(len / chunk_size)``; an empty payload has zero chunks and no
   payload ever produces a trailing empty chunk.

2. Inscription
   One payload plus its content type is framed so that ordinal indexers
   scanning the ledger recognise it:

       OP_FALSE OP_IF "ord" OP_1 <content-type> OP_0 <body> OP_ENDIF

   OP_1 is the protocol version marker and OP_0 the raw encoding mode.
   Decoding checks the ``OP_FALSE OP_IF "ord"`` marker first and raises
   EncodingError on any mismatch.

Attestations use a third, field-list form: a sequence of pushes placed in a
single data-carrier output.

The transaction builder only talks to this module, so it never reasons
about per-output size limits itself.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from cellchain.core.config import LedgerConfig
from cellchain.core.script import (
    OP_FALSE,
    Opcode,
    is_op_return,
    op_return_script,
    parse_script,
    push_data,
)
from cellchain.errors import ConfigurationError, EncodingError
from cellchain.utils.logger import get_logger
from cellchain.utils.validation import validate_bytes, validate_content_type

logger = get_logger("envelope")


# =============================================================================
# Constants
# =============================================================================

DEFAULT_CHUNK_SIZE = 220

INSCRIPTION_MARKER = b"ord"
INSCRIPTION_PROTOCOL_VERSION = Opcode.OP_1
INSCRIPTION_ENCODING_RAW = Opcode.OP_0

DEFAULT_CONTENT_TYPE = "application/octet-stream"


# =============================================================================
# Types
# =============================================================================


@dataclass(frozen=True)
class Payload:
    """Opaque application bytes plus a content-type tag."""
    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    def __post_init__(self):
        valid, err = validate_bytes(self.data, "payload data")
        if not valid:
            raise EncodingError(err)
        valid, err = validate_content_type(self.content_type)
        if not valid:
            raise EncodingError(err)

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Envelope:
    """A payload split into ordered chunks."""
    chunks: Tuple[bytes, ...]
    content_type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    def __len__(self) -> int:
        return len(self.chunks)


# =============================================================================
# Data carrier
# =============================================================================


def chunk_payload(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[bytes]:
    """
    Split data into consecutive chunks of at most ``chunk_size`` bytes.

    Raises:
        ConfigurationError: chunk_size < 1
    """
    if not isinstance(chunk_size, int) or chunk_size < 1:
        raise ConfigurationError(f"chunk_size must be a positive int, got {chunk_size!r}")
    return [bytes(data[i:i + chunk_size]) for i in range(0, len(data), chunk_size)]


def _check_size(payload: Payload, max_payload_bytes: Optional[int]) -> None:
    if max_payload_bytes is not None and len(payload.data) > max_payload_bytes:
        raise EncodingError(
            f"Payload of {len(payload.data)} bytes exceeds limit of {max_payload_bytes}"
        )


def encode_data_carrier(
    payload: Payload,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_payload_bytes: Optional[int] = None,
) -> Envelope:
    """
    Encode a payload into data-carrier chunks.

    Raises:
        EncodingError: payload exceeds ``max_payload_bytes``
        ConfigurationError: chunk_size < 1
    """
    _check_size(payload, max_payload_bytes)
    chunks = tuple(chunk_payload(payload.data, chunk_size))
    logger.debug(f"Encoded {len(payload.data)} bytes into {len(chunks)} chunk(s)")
    return Envelope(chunks=chunks, content_type=payload.content_type)


def decode_data_carrier(chunks: Iterable[bytes]) -> bytes:
    """Reassemble chunks in output order."""
    return b"".join(chunks)


def data_carrier_scripts(envelope: Envelope) -> List[bytes]:
    """One ``OP_FALSE OP_RETURN <chunk>`` locking script per chunk."""
    return [op_return_script([chunk]) for chunk in envelope.chunks]


def _op_return_pushes(script: bytes) -> List[bytes]:
    if not is_op_return(script):
        raise EncodingError("Output is not an OP_FALSE OP_RETURN data carrier")
    try:
        tokens = parse_script(script[2:])
    except ValueError as exc:
        raise EncodingError(f"Malformed data carrier: {exc}") from exc
    if any(not token.is_push for token in tokens):
        raise EncodingError("Data carrier contains non-push opcodes")
    return [token.data for token in tokens]


def decode_data_carrier_scripts(scripts: Iterable[bytes]) -> bytes:
    """
    Reassemble a payload from data-carrier locking scripts.

    Raises:
        EncodingError: a script is not a single-push data carrier
    """
    chunks = []
    for script in scripts:
        pushes = _op_return_pushes(script)
        if len(pushes) != 1:
            raise EncodingError(f"Expected one push per data carrier, got {len(pushes)}")
        chunks.append(pushes[0])
    return decode_data_carrier(chunks)


# =============================================================================
# Field lists
# =============================================================================


def encode_fields(fields: Sequence[bytes]) -> bytes:
    """Encode fields as a sequence of script pushes."""
    return b"".join(push_data(field) for field in fields)


def decode_fields(data: bytes) -> List[bytes]:
    """
    Decode a sequence of pushes.

    Raises:
        EncodingError: truncated push or non-push opcode
    """
    try:
        tokens = parse_script(data)
    except ValueError as exc:
        raise EncodingError(f"Malformed field list: {exc}") from exc
    if any(not token.is_push for token in tokens):
        raise EncodingError("Field list contains non-push opcodes")
    return [token.data for token in tokens]


def fields_script(encoded_fields: bytes) -> bytes:
    """Single data-carrier output holding pre-encoded field pushes."""
    return bytes([OP_FALSE, Opcode.OP_RETURN]) + encoded_fields


def decode_fields_script(script: bytes) -> List[bytes]:
    """Fields carried by a data-carrier output."""
    return _op_return_pushes(script)


# =============================================================================
# Inscription
# =============================================================================


def encode_inscription(payload: Payload, max_payload_bytes: Optional[int] = None) -> bytes:
    """
    Wrap a payload in an ``ord`` inscription envelope.

    Raises:
        EncodingError: payload exceeds ``max_payload_bytes``
    """
    _check_size(payload, max_payload_bytes)
    return (
        bytes([OP_FALSE, Opcode.OP_IF])
        + push_data(INSCRIPTION_MARKER)
        + bytes([INSCRIPTION_PROTOCOL_VERSION])
        + push_data(payload.content_type.encode("utf-8"))
        + bytes([INSCRIPTION_ENCODING_RAW])
        + push_data(payload.data)
        + bytes([Opcode.OP_ENDIF])
    )


def decode_inscription(script: bytes) -> Payload:
    """
    Extract the payload from an inscription envelope.

    The envelope may be followed by other script (e.g. a P2PKH lock), but
    must start at the beginning of the script.

    Raises:
        EncodingError: marker, version, encoding or framing mismatch
    """
    try:
        tokens = parse_script(script)
    except ValueError as exc:
        raise EncodingError(f"Malformed inscription: {exc}") from exc

    if (
        len(tokens) < 3
        or tokens[0].opcode != OP_FALSE
        or tokens[1].opcode != Opcode.OP_IF
        or tokens[2].data != INSCRIPTION_MARKER
    ):
        raise EncodingError("Inscription marker not found")

    if len(tokens) < 8:
        raise EncodingError("Truncated inscription envelope")

    version, content_type, encoding, body, end = tokens[3:8]
    if version.opcode != INSCRIPTION_PROTOCOL_VERSION or version.is_push:
        raise EncodingError(f"Unsupported inscription version opcode {version.opcode:#04x}")
    if not content_type.is_push:
        raise EncodingError("Inscription content type missing")
    if encoding.opcode != INSCRIPTION_ENCODING_RAW:
        raise EncodingError(f"Unsupported inscription encoding opcode {encoding.opcode:#04x}")
    if not body.is_push:
        raise EncodingError("Inscription body missing")
    if end.opcode != Opcode.OP_ENDIF:
        raise EncodingError("Inscription envelope not terminated")

    try:
        content_type_text = content_type.data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EncodingError("Inscription content type is not UTF-8") from exc

    return Payload(data=body.data, content_type=content_type_text)


# =============================================================================
# Codec
# =============================================================================


class EnvelopeCodec:
    """
    Envelope operations bound to a configuration's limits.

    Used by the transaction builder so chunk size and payload limits come
    from one place.
    """

    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig()

    def encode(self, payload: Payload) -> Envelope:
        return encode_data_carrier(
            payload,
            chunk_size=self.config.chunk_size,
            max_payload_bytes=self.config.max_payload_bytes,
        )

    def decode(self, envelope: Envelope) -> Payload:
        return Payload(
            data=decode_data_carrier(envelope.chunks),
            content_type=envelope.content_type,
        )

    def scripts(self, payload: Payload) -> List[bytes]:
        """Data-carrier locking scripts for a payload."""
        return data_carrier_scripts(self.encode(payload))

    def inscribe(self, payload: Payload) -> bytes:
        return encode_inscription(payload, max_payload_bytes=self.config.max_payload_bytes)

    def read_inscription(self, script: bytes) -> Payload:
        return decode_inscription(script)
