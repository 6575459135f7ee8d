"""
Exceptions for the bridge pipeline.

Every failure surfaced to a caller is a BridgeError whose ``kind`` is one of
the ErrorKind values, together with enough context (coordinates, host,
attempt count, transaction index) to resume or diagnose without replaying
side-effecting steps.
"""

from enum import Enum
from typing import Any, ClassVar, Mapping, Sequence


class ErrorKind(str, Enum):
    """Error taxonomy shared by every pipeline step."""
    NOT_YET_AVAILABLE = "NotYetAvailable"
    MALFORMED = "Malformed"
    REJECTED = "Rejected"
    UNCONFIRMED = "Unconfirmed"
    NETWORK_FAILURE = "NetworkFailure"
    REVERTED = "Reverted"
    TIMEOUT = "Timeout"
    CANCELLED = "Cancelled"


class DecodeFailure(str, Enum):
    """Reasons a VAA or payload byte string cannot be decoded."""
    TRUNCATED = "Truncated"
    BAD_SIGNATURE_ORDERING = "BadSignatureOrdering"
    UNSUPPORTED_VERSION = "UnsupportedVersion"
    INVALID_ENCODING = "InvalidEncoding"


class BridgeError(Exception):
    """Base exception for bridge pipeline errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.MALFORMED

    def __init__(self, message: str, **context: Any):
        self.context: dict[str, Any] = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging or persistence."""
        return {
            "kind": self.kind.value,
            "message": str(self),
            "context": {key: str(value) for key, value in self.context.items()},
        }


class NotYetAvailableError(BridgeError):
    """Raised when a receipt or attestation is expected but not produced yet."""
    kind = ErrorKind.NOT_YET_AVAILABLE


class MalformedError(BridgeError):
    """Raised when a peer returned structurally invalid data."""
    kind = ErrorKind.MALFORMED


class DecodeError(MalformedError):
    """Raised when a binary structure cannot be decoded."""

    def __init__(self, reason: DecodeFailure, message: str, **context: Any):
        self.reason = reason
        super().__init__(f"{reason.value}: {message}", **context)


class MalformedEventError(MalformedError):
    """Raised when a bridge-publish event was found but could not be decoded."""


class SignError(BridgeError):
    """Base exception for signer adapter failures.

    Attributes:
        index: Position in the submitted batch that failed
        submitted: Hashes of the transactions submitted before the failure
    """

    def __init__(
        self,
        message: str,
        index: int | None = None,
        submitted: Sequence[str] = (),
        **context: Any,
    ):
        self.index = index
        self.submitted: tuple[str, ...] = tuple(submitted)
        super().__init__(message, index=index, **context)


class SignatureRejectedError(SignError):
    """Raised when the user declined to sign."""
    kind = ErrorKind.REJECTED


class NetworkFailureError(SignError):
    """Raised when the transaction could not reach the node. Safe to retry the whole call."""
    kind = ErrorKind.NETWORK_FAILURE


class UnconfirmedError(SignError):
    """Raised when a transaction was submitted but finality was not observed."""
    kind = ErrorKind.UNCONFIRMED


class TransactionRevertedError(SignError):
    """Raised when a submitted transaction finalized with a failure status."""
    kind = ErrorKind.REVERTED


class FetchError(BridgeError):
    """Base exception for attestation fetch failures.

    Attributes:
        attempts: Number of attempts made
        last_errors: Last error description seen per host
    """

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_errors: Mapping[str, str] | None = None,
        **context: Any,
    ):
        self.attempts = attempts
        self.last_errors: dict[str, str] = dict(last_errors or {})
        super().__init__(message, attempts=attempts, **context)


class AttestationTimeoutError(FetchError):
    """Raised when every attempt was exhausted without a matching VAA."""
    kind = ErrorKind.TIMEOUT


class FetchCancelledError(FetchError):
    """Raised when the caller cancelled or its deadline passed."""
    kind = ErrorKind.CANCELLED


class ReceiptTimeoutError(BridgeError):
    """Raised when a source receipt never showed a bridge-publish event."""
    kind = ErrorKind.TIMEOUT


class SignatureRequestRejected(Exception):
    """Raised by wallet integrations when the user declines a signature request."""


class WalletAdapterError(TypeError):
    """Raised when a wallet object lacks the fields or methods an adapter needs."""


class ReceiptFieldConflictError(ValueError):
    """Raised when a resolved BridgeReceipt field would be overwritten."""


class InvalidTransitionError(RuntimeError):
    """Raised when a pipeline step is invoked from the wrong state."""
