"""Envelopes, attestations, transactions and cost estimates"""
from cellchain.core.config import LedgerConfig, load_config
from cellchain.core.envelope import (
    Envelope,
    EnvelopeCodec,
    Payload,
    chunk_payload,
    decode_data_carrier,
    decode_inscription,
    encode_data_carrier,
    encode_inscription,
)
from cellchain.core.attestation import (
    Attestation,
    AttestationLog,
    build_attestation,
    parse_attestation,
    serialize,
    walk_history,
)
from cellchain.core.transaction import (
    UTXO,
    BuiltTransaction,
    OutputKind,
    TransactionBuilder,
    TxInput,
    TxOutput,
)
from cellchain.core.cost import CostEstimate, estimate_cost

__all__ = [
    "LedgerConfig",
    "load_config",
    "Envelope",
    "EnvelopeCodec",
    "Payload",
    "chunk_payload",
    "decode_data_carrier",
    "decode_inscription",
    "encode_data_carrier",
    "encode_inscription",
    "Attestation",
    "AttestationLog",
    "build_attestation",
    "parse_attestation",
    "serialize",
    "walk_history",
    "UTXO",
    "BuiltTransaction",
    "OutputKind",
    "TransactionBuilder",
    "TxInput",
    "TxOutput",
    "CostEstimate",
    "estimate_cost",
]
