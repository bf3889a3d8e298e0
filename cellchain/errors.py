"""
Error taxonomy for cellchain.

Every construction failure is raised at the point of detection. Nothing
retries internally; retry and user-facing messaging belong to the caller.

Signature verification has no error type: a bad signature is a
``False`` from ``verify``, never an exception.
"""

from typing import Optional


class CellchainError(Exception):
    """Base class for all cellchain failures."""


class ConfigurationError(CellchainError, ValueError):
    """Bad seed, derivation path, configuration value or missing credentials."""


class EncodingError(CellchainError, ValueError):
    """Payload exceeds a protocol limit, or an envelope fails to decode."""


class SigningError(CellchainError):
    """Invalid key material or digest handed to the signer."""


class AttestationError(CellchainError, ValueError):
    """Attestation violates the version chain rules."""


class TransactionError(CellchainError, ValueError):
    """Inputs and outputs cannot form a valid transaction (duplicate UTXO, no outputs)."""


class InsufficientFundsError(CellchainError):
    """
    Inputs cannot cover outputs plus fee.

    Attributes:
        required: Units needed (fee + marker outputs)
        available: Units supplied by the inputs
    """

    def __init__(self, required: int, available: int, message: Optional[str] = None):
        self.required = required
        self.available = available
        super().__init__(
            message or f"Insufficient funds: need {required} units, have {available}"
        )

    @property
    def shortfall(self) -> int:
        return max(self.required - self.available, 0)
