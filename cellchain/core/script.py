"""
Script primitives - opcodes, pushes and CompactSize integers.

Only the handful of opcodes the library emits are modelled:

    P2PKH:          OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG
    Data carrier:   OP_FALSE OP_RETURN <push> [<push> ...]
    Inscription:    OP_FALSE OP_IF "ord" OP_1 <type> OP_0 <body> OP_ENDIF
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, List, Optional, Tuple


class Opcode(IntEnum):
    """Script opcodes used by cellchain."""
    OP_0 = 0x00
    OP_PUSHDATA1 = 0x4C
    OP_PUSHDATA2 = 0x4D
    OP_PUSHDATA4 = 0x4E
    OP_1 = 0x51
    OP_IF = 0x63
    OP_ENDIF = 0x68
    OP_RETURN = 0x6A
    OP_DUP = 0x76
    OP_EQUALVERIFY = 0x88
    OP_HASH160 = 0xA9
    OP_CHECKSIG = 0xAC


OP_FALSE = Opcode.OP_0

MAX_PUSH_SIZE = 0xFFFFFFFF


# =============================================================================
# CompactSize integers
# =============================================================================


def encode_varint(value: int) -> bytes:
    """Encode a CompactSize unsigned integer."""
    if value < 0:
        raise ValueError("varint cannot be negative")
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", value)
    if value <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", value)
    return b"\xff" + struct.pack("<Q", value)


def read_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Decode a CompactSize integer.

    Returns:
        (value, new_offset)
    """
    prefix = data[offset]
    if prefix < 0xFD:
        return prefix, offset + 1
    size, fmt = {0xFD: (2, "<H"), 0xFE: (4, "<I"), 0xFF: (8, "<Q")}[prefix]
    end = offset + 1 + size
    if end > len(data):
        raise ValueError("Truncated varint")
    return struct.unpack(fmt, data[offset + 1:end])[0], end


def varint_size(value: int) -> int:
    return len(encode_varint(value))


# =============================================================================
# Pushes
# =============================================================================


def push_data(data: bytes) -> bytes:
    """
    Encode a data push with the smallest pushdata form.

    Empty data is pushed as OP_0.
    """
    length = len(data)
    if length == 0:
        return bytes([Opcode.OP_0])
    if length < Opcode.OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([Opcode.OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([Opcode.OP_PUSHDATA2]) + struct.pack("<H", length) + data
    if length <= MAX_PUSH_SIZE:
        return bytes([Opcode.OP_PUSHDATA4]) + struct.pack("<I", length) + data
    raise ValueError(f"Push of {length} bytes exceeds maximum {MAX_PUSH_SIZE}")


@dataclass(frozen=True)
class ScriptToken:
    """A parsed script element: an opcode, with data if it is a push."""
    opcode: int
    data: Optional[bytes] = None

    @property
    def is_push(self) -> bool:
        return self.data is not None


def parse_script(script: bytes) -> List[ScriptToken]:
    """
    Split a script into tokens.

    OP_0 is reported as an empty push.

    Raises:
        ValueError: a push runs past the end of the script
    """
    tokens = []
    offset = 0
    while offset < len(script):
        opcode = script[offset]
        offset += 1

        if opcode == Opcode.OP_0:
            tokens.append(ScriptToken(opcode, b""))
            continue

        if opcode < Opcode.OP_PUSHDATA1:
            length = opcode
        elif opcode == Opcode.OP_PUSHDATA1:
            length, offset = _read_length(script, offset, 1, "<B")
        elif opcode == Opcode.OP_PUSHDATA2:
            length, offset = _read_length(script, offset, 2, "<H")
        elif opcode == Opcode.OP_PUSHDATA4:
            length, offset = _read_length(script, offset, 4, "<I")
        else:
            tokens.append(ScriptToken(opcode))
            continue

        if offset + length > len(script):
            raise ValueError("Push runs past end of script")
        tokens.append(ScriptToken(opcode, script[offset:offset + length]))
        offset += length

    return tokens


def _read_length(script: bytes, offset: int, size: int, fmt: str) -> Tuple[int, int]:
    if offset + size > len(script):
        raise ValueError("Truncated pushdata length")
    return struct.unpack(fmt, script[offset:offset + size])[0], offset + size


# =============================================================================
# Standard scripts
# =============================================================================


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    """Locking script paying to a 20-byte public key hash."""
    if len(pubkey_hash) != 20:
        raise ValueError(f"Public key hash must be 20 bytes, got {len(pubkey_hash)}")
    return (
        bytes([Opcode.OP_DUP, Opcode.OP_HASH160])
        + push_data(pubkey_hash)
        + bytes([Opcode.OP_EQUALVERIFY, Opcode.OP_CHECKSIG])
    )


def op_return_script(pushes: Iterable[bytes]) -> bytes:
    """Unspendable ``OP_FALSE OP_RETURN`` script carrying the given pushes."""
    return bytes([OP_FALSE, Opcode.OP_RETURN]) + b"".join(push_data(p) for p in pushes)


def is_op_return(script: bytes) -> bool:
    """Check for the unspendable ``OP_FALSE OP_RETURN`` prefix."""
    return script[:2] == bytes([OP_FALSE, Opcode.OP_RETURN])


def p2pkh_unlocking_script(der_signature: bytes, sighash_type: int, public_key: bytes) -> bytes:
    """Unlocking script: <DER signature || sighash type> <public key>."""
    return push_data(der_signature + bytes([sighash_type])) + push_data(public_key)
