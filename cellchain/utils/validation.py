"""
Input Validation - structural checks for values crossing the library boundary.

Validators return ``(is_valid, error_message)`` so callers decide which
typed error to raise. Messages name the field, never its secret contents.
"""

import re
from typing import Any, Optional, Tuple

# =============================================================================
# Constants
# =============================================================================

TXID_HEX_LENGTH = 64
MAX_SUBJECT_ID_LENGTH = 256
MAX_CONTENT_TYPE_LENGTH = 255
MAX_OUTPUT_INDEX = 2**32 - 1

# Field bounds
MIN_AMOUNT = 0
MAX_AMOUNT = 2**64 - 1

# type/subtype with optional parameters, e.g. "application/json; charset=utf-8"
CONTENT_TYPE_PATTERN = r"^[\w.+-]+/[\w.+-]+(\s*;.*)?$"

# Hex digits only; whitespace is rejected
HEX_PATTERN = re.compile(r"^[0-9a-fA-F]*\Z")


# =============================================================================
# Validation Functions
# =============================================================================


def validate_bytes(
    data: Any,
    name: str,
    expected_length: Optional[int] = None,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
) -> Tuple[bool, str]:
    """
    Validate bytes input.

    Args:
        data: Data to validate
        name: Field name for error messages
        expected_length: Exact expected length
        min_length: Minimum allowed length
        max_length: Maximum allowed length

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(data, (bytes, bytearray)):
        return False, f"{name} must be bytes, got {type(data).__name__}"

    if expected_length is not None and len(data) != expected_length:
        return False, f"{name} must be {expected_length} bytes, got {len(data)}"

    if min_length is not None and len(data) < min_length:
        return False, f"{name} must be at least {min_length} bytes, got {len(data)}"

    if max_length is not None and len(data) > max_length:
        return False, f"{name} exceeds max length {max_length}, got {len(data)}"

    return True, ""


def validate_integer(
    value: Any,
    name: str,
    min_val: int = MIN_AMOUNT,
    max_val: int = MAX_AMOUNT,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.

    Booleans are rejected even though ``bool`` subclasses ``int``.
    """
    if not isinstance(value, int) or isinstance(value, bool):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"

    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"

    return True, ""


def validate_amount(amount: Any, name: str = "amount") -> Tuple[bool, str]:
    """Validate a value in ledger units."""
    return validate_integer(amount, name, MIN_AMOUNT, MAX_AMOUNT)


def validate_string(
    value: Any,
    name: str,
    max_length: int = MAX_SUBJECT_ID_LENGTH,
    pattern: Optional[str] = None,
    allow_empty: bool = False,
) -> Tuple[bool, str]:
    """
    Validate string input.

    Args:
        value: Value to validate
        name: Field name for errors
        max_length: Maximum string length
        pattern: Optional regex pattern
        allow_empty: Accept the empty string

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if not value and not allow_empty:
        return False, f"{name} must not be empty"

    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"

    if pattern and not re.match(pattern, value):
        return False, f"{name} does not match required pattern"

    return True, ""


def validate_hex_string(value: Any, name: str, expected_bytes: Optional[int] = None) -> Tuple[bool, str]:
    """
    Validate a hex string (with or without 0x prefix).

    Args:
        value: Value to validate
        name: Field name
        expected_bytes: Expected byte length when decoded

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    hex_str = value[2:] if value.startswith("0x") else value

    if len(hex_str) % 2 != 0:
        return False, f"{name} has odd length, invalid hex"

    if not HEX_PATTERN.match(hex_str):
        return False, f"{name} contains invalid hex characters"

    if expected_bytes is not None:
        actual_bytes = len(hex_str) // 2
        if actual_bytes != expected_bytes:
            return False, f"{name} must be {expected_bytes} bytes, got {actual_bytes}"

    return True, ""


# =============================================================================
# Composite Validators
# =============================================================================


def validate_txid(value: Any, name: str = "txid") -> Tuple[bool, str]:
    """Validate a transaction id: 64 hex characters, no prefix."""
    if isinstance(value, str) and value.startswith("0x"):
        return False, f"{name} must not carry a 0x prefix"
    return validate_hex_string(value, name, expected_bytes=TXID_HEX_LENGTH // 2)


def validate_content_type(value: Any) -> Tuple[bool, str]:
    """Validate a MIME content-type tag."""
    return validate_string(
        value,
        "content_type",
        max_length=MAX_CONTENT_TYPE_LENGTH,
        pattern=CONTENT_TYPE_PATTERN,
    )


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "validate_bytes",
    "validate_integer",
    "validate_amount",
    "validate_string",
    "validate_hex_string",
    "validate_txid",
    "validate_content_type",
    "TXID_HEX_LENGTH",
    "MAX_SUBJECT_ID_LENGTH",
    "MAX_CONTENT_TYPE_LENGTH",
    "MAX_OUTPUT_INDEX",
    "MAX_AMOUNT",
]
