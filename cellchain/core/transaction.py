"""
Transaction - assembling and signing ledger transactions.

Conceptual Background:
---------------------
A transaction consumes UTXOs (inputs) and creates outputs. Value is
conserved:

    sum(inputs.value) = sum(outputs.value) + fee

Outputs built here are of five kinds:

1. Data:         zero-value OP_FALSE OP_RETURN chunks of application payloads
2. Attestation:  one zero-value OP_FALSE OP_RETURN holding the BAP field list
3. Chain marker: a dust-valued P2PKH output to an entity's own address,
                 continuing that entity's output chain
4. Inscription:  a 1-unit ``ord`` envelope followed by a P2PKH lock
5. Change:       remainder back to the change key, only above the dust threshold

Fee Model:
---------
Size is estimated from the input count and the outputs actually built:

    size = 10 + 148 * inputs + sum(8 + varint(len(script)) + len(script)) + 34

The trailing 34 bytes reserve room for the change output. The fee is
``ceil(size * fee_rate)``. If the change would be at or below the dust
threshold it is folded into the fee instead.

Signing:
-------
Each input is bound to its own key (heterogeneous per-entity keys are
fine) and signed over the BIP143 digest with SIGHASH_ALL | SIGHASH_FORKID.
Funds are checked before any signature is produced, so a failed build
never yields a partially signed transaction.
"""

import math
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple, Union

from cellchain.core.attestation import Attestation, serialize
from cellchain.core.config import LedgerConfig
from cellchain.core.envelope import EnvelopeCodec, Payload, fields_script
from cellchain.core.script import (
    encode_varint,
    p2pkh_script,
    p2pkh_unlocking_script,
    parse_script,
    varint_size,
)
from cellchain.crypto import (
    KeyPair,
    compress_public_key,
    double_sha256,
    hash160,
    sign,
    signature_from_der,
    signature_to_der,
    verify,
)
from cellchain.errors import ConfigurationError, InsufficientFundsError, TransactionError
from cellchain.utils.logger import get_logger
from cellchain.utils.validation import (
    MAX_OUTPUT_INDEX,
    validate_amount,
    validate_integer,
    validate_txid,
)

logger = get_logger("transaction")


# =============================================================================
# Constants
# =============================================================================

TX_VERSION = 1
TX_LOCKTIME = 0
SEQUENCE_FINAL = 0xFFFFFFFF

SIGHASH_ALL = 0x01
SIGHASH_FORKID = 0x40
SIGHASH_ALL_FORKID = SIGHASH_ALL | SIGHASH_FORKID

# Size model (bytes)
TX_OVERHEAD_BYTES = 10     # version(4) + locktime(4) + input/output counts
P2PKH_INPUT_BYTES = 148    # outpoint(36) + script(~107 + 1) + sequence(4)
P2PKH_OUTPUT_BYTES = 34    # value(8) + script length(1) + script(25)


# =============================================================================
# UTXO
# =============================================================================


@dataclass(frozen=True)
class UTXO:
    """
    A spendable output supplied by the ledger-query layer.

    Attributes:
        source_tx_ref: Txid (64 hex chars, display byte order) that created it
        output_index: Index within that transaction's outputs
        value_units: Amount in the ledger's smallest unit
        spending_key_ref: Key that can spend it: an EntityId, a
            ``"row,col"`` string, a derivation path or a KeyPair
    """
    source_tx_ref: str
    output_index: int
    value_units: int
    spending_key_ref: Any = field(compare=False)

    def __post_init__(self):
        valid, err = validate_txid(self.source_tx_ref, "source_tx_ref")
        if not valid:
            raise ValueError(err)
        valid, err = validate_integer(self.output_index, "output_index", 0, MAX_OUTPUT_INDEX)
        if not valid:
            raise ValueError(err)
        valid, err = validate_amount(self.value_units, "value_units")
        if not valid:
            raise ValueError(err)

    @property
    def outpoint(self) -> bytes:
        """Serialized outpoint: txid in internal byte order || index (LE)."""
        return bytes.fromhex(self.source_tx_ref)[::-1] + struct.pack("<I", self.output_index)

    def __repr__(self) -> str:
        return f"UTXO({self.source_tx_ref[:10]}...:{self.output_index}, value={self.value_units})"


# =============================================================================
# Outputs and Inputs
# =============================================================================


class OutputKind(Enum):
    """Role of an output within a built transaction."""
    DATA = "data"
    ATTESTATION = "attestation"
    CHAIN_MARKER = "chain_marker"
    INSCRIPTION = "inscription"
    CHANGE = "change"


@dataclass(frozen=True)
class TxOutput:
    """A value and the locking script that guards it."""
    value: int
    script: bytes
    kind: OutputKind = field(default=OutputKind.DATA, compare=False)

    def to_bytes(self) -> bytes:
        """Serialize: value(8, LE) || varint(len) || script."""
        return struct.pack("<Q", self.value) + encode_varint(len(self.script)) + self.script

    @property
    def serialized_size(self) -> int:
        return 8 + varint_size(len(self.script)) + len(self.script)


@dataclass(frozen=True)
class TxInput:
    """A UTXO being spent, with its unlocking script once signed."""
    utxo: UTXO
    unlocking_script: bytes = b""
    sequence: int = SEQUENCE_FINAL

    def to_bytes(self) -> bytes:
        """Serialize: outpoint(36) || varint(len) || script || sequence(4, LE)."""
        return (
            self.utxo.outpoint
            + encode_varint(len(self.unlocking_script))
            + self.unlocking_script
            + struct.pack("<I", self.sequence)
        )


# =============================================================================
# Signature Hash (BIP143 / FORKID)
# =============================================================================


def signature_hash(
    inputs: Sequence[TxInput],
    outputs: Sequence[TxOutput],
    input_index: int,
    script_code: bytes,
    sighash_type: int = SIGHASH_ALL_FORKID,
    version: int = TX_VERSION,
    locktime: int = TX_LOCKTIME,
) -> bytes:
    """
    Compute the digest an input signs.

    Args:
        inputs: All transaction inputs
        outputs: All transaction outputs (final, including change)
        input_index: Input being signed
        script_code: Locking script of the output being spent
        sighash_type: Sighash flags (SIGHASH_ALL | SIGHASH_FORKID)

    Returns:
        32-byte double SHA-256 digest
    """
    if not 0 <= input_index < len(inputs):
        raise IndexError(f"Input index {input_index} out of range")

    spent = inputs[input_index]
    hash_prevouts = double_sha256(b"".join(inp.utxo.outpoint for inp in inputs))
    hash_sequence = double_sha256(b"".join(struct.pack("<I", inp.sequence) for inp in inputs))
    hash_outputs = double_sha256(b"".join(out.to_bytes() for out in outputs))

    preimage = (
        struct.pack("<I", version)
        + hash_prevouts
        + hash_sequence
        + spent.utxo.outpoint
        + encode_varint(len(script_code))
        + script_code
        + struct.pack("<Q", spent.utxo.value_units)
        + struct.pack("<I", spent.sequence)
        + hash_outputs
        + struct.pack("<I", locktime)
        + struct.pack("<I", sighash_type)
    )
    return double_sha256(preimage)


# =============================================================================
# Built Transaction
# =============================================================================


@dataclass(frozen=True)
class BuiltTransaction:
    """
    A fully signed transaction ready for broadcast.

    Invariant: sum(inputs) == sum(outputs) + fee, fee >= 0

    Attributes:
        inputs: Signed inputs
        outputs: Outputs in serialization order
        signatures: 64-byte (r || s) signature per input
        fee: Fee paid, including any change folded in as dust
    """
    inputs: Tuple[TxInput, ...]
    outputs: Tuple[TxOutput, ...]
    signatures: Tuple[bytes, ...]
    fee: int
    version: int = TX_VERSION
    locktime: int = TX_LOCKTIME

    def __post_init__(self):
        if not self.inputs:
            raise ValueError("Transaction must have at least one input")
        if not self.outputs:
            raise ValueError("Transaction must have at least one output")
        if self.fee < 0:
            raise ValueError("Fee cannot be negative")
        if len(self.signatures) != len(self.inputs):
            raise ValueError("Every input needs exactly one signature")
        if self.total_input != self.total_output + self.fee:
            raise ValueError(
                f"Value not conserved: inputs {self.total_input} != "
                f"outputs {self.total_output} + fee {self.fee}"
            )

    @property
    def total_input(self) -> int:
        return sum(inp.utxo.value_units for inp in self.inputs)

    @property
    def total_output(self) -> int:
        return sum(out.value for out in self.outputs)

    def outputs_of(self, kind: OutputKind) -> List[TxOutput]:
        return [out for out in self.outputs if out.kind == kind]

    @property
    def change(self) -> Optional[TxOutput]:
        change_outputs = self.outputs_of(OutputKind.CHANGE)
        return change_outputs[0] if change_outputs else None

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_bytes(self) -> bytes:
        """Serialize in the standard wire format."""
        parts = [struct.pack("<I", self.version), encode_varint(len(self.inputs))]
        parts.extend(inp.to_bytes() for inp in self.inputs)
        parts.append(encode_varint(len(self.outputs)))
        parts.extend(out.to_bytes() for out in self.outputs)
        parts.append(struct.pack("<I", self.locktime))
        return b"".join(parts)

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    @property
    def size(self) -> int:
        return len(self.to_bytes())

    @property
    def txid(self) -> str:
        """Double SHA-256 of the serialization, in display (reversed) order."""
        return double_sha256(self.to_bytes())[::-1].hex()

    # =========================================================================
    # Verification
    # =========================================================================

    def verify_input(self, input_index: int) -> bool:
        """
        Check an input's signature against the public key in its unlocking script.

        Returns False for any malformed unlocking script.
        """
        if not 0 <= input_index < len(self.inputs):
            return False
        try:
            tokens = parse_script(self.inputs[input_index].unlocking_script)
        except ValueError:
            return False
        if len(tokens) != 2 or not all(token.is_push for token in tokens):
            return False

        sig_with_type, public_key = tokens[0].data, tokens[1].data
        if not sig_with_type or sig_with_type[-1] != SIGHASH_ALL_FORKID:
            return False
        signature = signature_from_der(sig_with_type[:-1])
        if signature is None or signature != self.signatures[input_index]:
            return False

        digest = signature_hash(
            self.inputs,
            self.outputs,
            input_index,
            p2pkh_script(hash160(public_key)),
            version=self.version,
            locktime=self.locktime,
        )
        return verify(digest, signature, public_key)

    def verify_signatures(self) -> bool:
        return all(self.verify_input(i) for i in range(len(self.inputs)))

    def __repr__(self) -> str:
        return (
            f"BuiltTransaction(id={self.txid[:10]}..., inputs={len(self.inputs)}, "
            f"outputs={len(self.outputs)}, fee={self.fee})"
        )


# =============================================================================
# Builder
# =============================================================================


ChangeKey = Union[KeyPair, bytes, Any]


class TransactionBuilder:
    """
    Assembles and signs transactions for a wallet context.

    Args:
        wallet: WalletContext that resolves spending keys and entity addresses
        config: Overrides the wallet's configuration
        codec: Envelope codec (defaults to one bound to ``config``)
    """

    def __init__(self, wallet, config: Optional[LedgerConfig] = None, codec: Optional[EnvelopeCodec] = None):
        self.wallet = wallet
        self.config = config or wallet.config
        self.codec = codec or EnvelopeCodec(self.config)

    # =========================================================================
    # Size and fee
    # =========================================================================

    @staticmethod
    def estimate_size(input_count: int, outputs: Sequence[TxOutput], include_change: bool = True) -> int:
        """Estimated serialized size in bytes."""
        size = TX_OVERHEAD_BYTES + input_count * P2PKH_INPUT_BYTES
        size += sum(out.serialized_size for out in outputs)
        if include_change:
            size += P2PKH_OUTPUT_BYTES
        return size

    @staticmethod
    def fee_for_size(size: int, fee_rate_per_byte: float) -> int:
        return math.ceil(size * fee_rate_per_byte)

    # =========================================================================
    # Output construction
    # =========================================================================

    def _change_hash(self, change_key: ChangeKey) -> bytes:
        if change_key is None:
            return self.wallet.root_key().public_key_hash
        if isinstance(change_key, KeyPair):
            return change_key.public_key_hash
        if isinstance(change_key, (bytes, bytearray)):
            try:
                return hash160(compress_public_key(bytes(change_key)))
            except ValueError as exc:
                raise ConfigurationError(f"Invalid change public key: {exc}") from exc
        return self.wallet.key_for(change_key).public_key_hash

    def data_outputs(self, data_payloads: Sequence[Payload]) -> List[TxOutput]:
        """One zero-value data-carrier output per chunk, payloads in order."""
        outputs = []
        for payload in data_payloads:
            for script in self.codec.scripts(payload):
                outputs.append(TxOutput(0, script, OutputKind.DATA))
        return outputs

    def attestation_output(self, attestation: Attestation) -> TxOutput:
        payload = serialize(attestation)
        return TxOutput(0, fields_script(payload.data), OutputKind.ATTESTATION)

    def chain_marker_output(self, chain_entity) -> TxOutput:
        entity = self.wallet.entity_address(chain_entity)
        script = p2pkh_script(entity.key_pair.public_key_hash)
        return TxOutput(self.config.chain_marker_value, script, OutputKind.CHAIN_MARKER)

    def inscription_output(self, inscription: Payload, owner_hash: bytes) -> TxOutput:
        script = self.codec.inscribe(inscription) + p2pkh_script(owner_hash)
        return TxOutput(self.config.inscription_value, script, OutputKind.INSCRIPTION)

    # =========================================================================
    # Build
    # =========================================================================

    def build(
        self,
        inputs: Sequence[UTXO],
        data_payloads: Sequence[Payload] = (),
        attestation: Optional[Attestation] = None,
        fee_rate_per_byte: Optional[float] = None,
        change_key: ChangeKey = None,
        chain_entity=None,
        inscription: Optional[Payload] = None,
    ) -> BuiltTransaction:
        """
        Build and sign a transaction.

        Args:
            inputs: UTXOs to spend, each with its own spending key reference
            data_payloads: Payloads stored as data-carrier chunks
            attestation: Attestation appended as one field output
            fee_rate_per_byte: Units per byte (defaults to config)
            change_key: KeyPair, public key bytes or key reference for the
                change (defaults to the wallet root key)
            chain_entity: Entity whose address receives a chain marker output
            inscription: Payload inscribed in a 1-unit output to the change key

        Returns:
            Signed BuiltTransaction

        Raises:
            InsufficientFundsError: no inputs, or inputs cannot cover fee and
                marker outputs
            EncodingError: a payload exceeds the protocol limit
            ConfigurationError: a key reference cannot be resolved
            TransactionError: a UTXO is supplied twice, or nothing is left
                to put in an output
        """
        if not inputs:
            raise InsufficientFundsError(required=0, available=0, message="No inputs supplied")

        fee_rate = self.config.default_fee_rate if fee_rate_per_byte is None else fee_rate_per_byte
        if fee_rate < 0:
            raise ConfigurationError(f"fee_rate_per_byte cannot be negative, got {fee_rate}")

        outpoints = [utxo.outpoint for utxo in inputs]
        if len(set(outpoints)) != len(outpoints):
            raise TransactionError("The same UTXO is supplied more than once")

        # 1. Bind every input to its own key
        bound_keys = [self.wallet.key_for(utxo.spending_key_ref) for utxo in inputs]
        change_hash = self._change_hash(change_key)

        # 2-4. Data, attestation and marker outputs
        outputs = self.data_outputs(data_payloads)
        if attestation is not None:
            outputs.append(self.attestation_output(attestation))
        if chain_entity is not None:
            outputs.append(self.chain_marker_output(chain_entity))
        if inscription is not None:
            outputs.append(self.inscription_output(inscription, change_hash))

        # 5. Fee from the estimated size
        size = self.estimate_size(len(inputs), outputs)
        fee = self.fee_for_size(size, fee_rate)

        # 6. Change, or fold it into the fee
        total_in = sum(utxo.value_units for utxo in inputs)
        marker_total = sum(out.value for out in outputs)
        change = total_in - fee - marker_total
        if change < 0:
            raise InsufficientFundsError(required=fee + marker_total, available=total_in)

        if change > self.config.dust_threshold:
            outputs.append(TxOutput(change, p2pkh_script(change_hash), OutputKind.CHANGE))
        else:
            fee += change

        if not outputs:
            raise TransactionError("Transaction would have no outputs")

        # 7. Sign each input with its bound key
        unsigned = [TxInput(utxo) for utxo in inputs]
        signed_inputs = []
        signatures = []
        for index, key in enumerate(bound_keys):
            digest = signature_hash(unsigned, outputs, index, p2pkh_script(key.public_key_hash))
            signature = sign(digest, key.private_key)
            unlocking = p2pkh_unlocking_script(
                signature_to_der(signature),
                SIGHASH_ALL_FORKID,
                key.compressed_public_key,
            )
            signed_inputs.append(TxInput(inputs[index], unlocking, unsigned[index].sequence))
            signatures.append(signature)

        tx = BuiltTransaction(
            inputs=tuple(signed_inputs),
            outputs=tuple(outputs),
            signatures=tuple(signatures),
            fee=fee,
        )
        logger.info(
            f"Built tx {tx.txid[:16]}...: {len(inputs)} input(s), "
            f"{len(outputs)} output(s), fee {fee}, est. {size} bytes"
        )
        return tx
