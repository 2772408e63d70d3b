"""
Exceptions for the zkStash SDK.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """
    Error classes surfaced by a paid call.

    Callers switch on the kind to decide on remediation; the values are
    stable strings so they can be logged or serialized as-is.
    """
    INVALID_KEY = "INVALID_KEY"
    AUTH_INVALID = "AUTH_INVALID"
    UNSUPPORTED_NETWORK = "UNSUPPORTED_NETWORK"
    CHALLENGE_INVALID = "CHALLENGE_INVALID"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    RPC_UNAVAILABLE = "RPC_UNAVAILABLE"
    TRANSACTION_REVERTED = "TRANSACTION_REVERTED"
    CONFIRMATION_TIMEOUT = "CONFIRMATION_TIMEOUT"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"
    SERVER_ERROR = "SERVER_ERROR"


class ZkStashError(Exception):
    """Base exception for all SDK errors."""

    kind: ErrorKind = ErrorKind.SERVER_ERROR

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.context = dict(context or {})
        super().__init__(message)


class InvalidKeyError(ZkStashError, ValueError):
    """Raised when private key material is malformed."""
    kind = ErrorKind.INVALID_KEY


class AuthInvalidError(ZkStashError):
    """Raised when the wallet signature or timestamp is rejected."""
    kind = ErrorKind.AUTH_INVALID


class UnsupportedNetworkError(ZkStashError):
    """Raised when no offered payment option matches an accepted network."""
    kind = ErrorKind.UNSUPPORTED_NETWORK


class ChallengeParseError(ZkStashError):
    """Raised when a 402 response body cannot be decoded into options."""
    kind = ErrorKind.CHALLENGE_INVALID


class PaymentFailedError(ZkStashError):
    """
    Raised when the on-chain payment could not be completed.

    Safe to retry with a *new* logical call.
    """
    kind = ErrorKind.PAYMENT_FAILED


class RpcUnavailableError(PaymentFailedError):
    """Raised when the chain RPC endpoint cannot be reached before broadcast."""
    kind = ErrorKind.RPC_UNAVAILABLE


class TransactionRevertedError(PaymentFailedError):
    """Raised when the transfer was mined but reported failure."""
    kind = ErrorKind.TRANSACTION_REVERTED

    def __init__(self, message: str, tx_ref: str, context: Optional[Dict[str, Any]] = None):
        self.tx_ref = tx_ref
        super().__init__(message, context)


class ConfirmationTimeoutError(ZkStashError):
    """
    Raised when a broadcast transfer was not confirmed before the deadline.

    Funds may have left the wallet. ``tx_ref`` must be reconciled externally;
    the SDK never resubmits the payment.
    """
    kind = ErrorKind.CONFIRMATION_TIMEOUT

    def __init__(self, message: str, tx_ref: str, context: Optional[Dict[str, Any]] = None):
        self.tx_ref = tx_ref
        super().__init__(message, context)


class PaymentRejectedError(ZkStashError):
    """Raised when the server still answers 402 after the proof was attached."""
    kind = ErrorKind.PAYMENT_REJECTED


class ServerError(ZkStashError):
    """Raised for any other non-2xx response."""
    kind = ErrorKind.SERVER_ERROR

    def __init__(self, message: str, status_code: int, body: Any = None,
                 context: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message, context)
