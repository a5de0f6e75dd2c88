"""
Escrow Error Taxonomy
=====================

Every failure the escrow service can surface, with a stable code and the
HTTP status it maps to.

Version: 0.1.0
"""

from datetime import datetime

from fastapi import status

from shared.zk.field import FieldOverflow


class EscrowError(Exception):
    """Base class for escrow service errors."""

    code = "escrow_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


# =============================================================================
# Cryptographic
# =============================================================================


class InsufficientTrustees(EscrowError):
    """Fewer trustees than the threshold, or a threshold below 2."""

    code = "insufficient_trustees"


class InsufficientShares(EscrowError):
    """Fewer shares than the threshold were supplied."""

    code = "insufficient_shares"
    http_status = status.HTTP_409_CONFLICT


class ShareIntegrityError(EscrowError):
    """A share failed authentication or the combined key failed confirmation."""

    code = "share_integrity_error"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class DecryptionFailed(EscrowError):
    """Authenticated decryption rejected the ciphertext."""

    code = "decryption_failed"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


# =============================================================================
# Disclosure Preconditions
# =============================================================================


class NotFound(EscrowError):
    """No ledger application (or escrow record) for the given key."""

    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class NotApproved(EscrowError):
    """The application is pending or already repaid."""

    code = "not_approved"
    http_status = status.HTTP_409_CONFLICT


class NotOverdue(EscrowError):
    """The repayment deadline has not passed yet."""

    code = "not_overdue"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, remaining_seconds: float, deadline: datetime | None = None) -> None:
        super().__init__(f"Repayment deadline not reached; {remaining_seconds:.0f}s remaining")
        self.remaining_seconds = remaining_seconds
        self.deadline = deadline


class BindingUnverifiable(EscrowError):
    """The activity commitment cannot be tied to a sealed identity."""

    code = "binding_unverifiable"
    http_status = status.HTTP_409_CONFLICT


# =============================================================================
# Operational
# =============================================================================


class DistributionPending(EscrowError):
    """Fewer than `threshold` trustees acknowledged their shares."""

    code = "distribution_pending"
    http_status = status.HTTP_409_CONFLICT


class IdentityAlreadySealed(EscrowError):
    """An identity was already registered or sealed and refresh is disabled."""

    code = "identity_already_sealed"
    http_status = status.HTTP_409_CONFLICT


class LedgerUnavailable(EscrowError):
    """The ledger could not be reached within the retry budget."""

    code = "ledger_unavailable"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


class TrusteeUnavailable(EscrowError):
    """A trustee channel failed or timed out."""

    code = "trustee_unavailable"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


class PayloadStoreError(EscrowError):
    """The payload store failed or returned content that does not match its locator."""

    code = "payload_store_error"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


# Errors that end an attempt_reveal call; all but NotOverdue are reported
# to HTTP callers as one opaque outcome.
REVEAL_ERRORS: tuple[type[Exception], ...] = (
    NotFound,
    NotApproved,
    NotOverdue,
    BindingUnverifiable,
    InsufficientShares,
    ShareIntegrityError,
    DecryptionFailed,
    DistributionPending,
    PayloadStoreError,
    TrusteeUnavailable,
)


__all__ = [
    "EscrowError",
    "FieldOverflow",
    "InsufficientTrustees",
    "InsufficientShares",
    "ShareIntegrityError",
    "DecryptionFailed",
    "NotFound",
    "NotApproved",
    "NotOverdue",
    "BindingUnverifiable",
    "DistributionPending",
    "IdentityAlreadySealed",
    "LedgerUnavailable",
    "TrusteeUnavailable",
    "PayloadStoreError",
    "REVEAL_ERRORS",
]
