"""Failure taxonomy for confidential record operations.

Controllers never let these escape ``submit``/``reveal``; they are caught,
classified and folded into an OperationResult. Store and crypto backends
may raise them directly, or raise anything else whose message carries one
of the well-known reason strings (see ``classify_failure``).
"""

from __future__ import annotations


USER_REJECTED_MARKERS = ("user rejected", "user denied", "rejected by user")
ALREADY_VERIFIED_MARKERS = ("already verified",)


class CipherFeedError(Exception):
    """Base class. ``kind`` is the stable discriminator used in results."""

    kind = "error"

    def __init__(self, message: str = "", *, reason: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.reason = reason


class SessionInitError(CipherFeedError):
    kind = "session_init"


class NotConnectedError(CipherFeedError):
    kind = "not_connected"


class ValidationError(CipherFeedError):
    """Local draft validation failure on a single field."""

    kind = "validation"

    def __init__(self, field: str, message: str = ""):
        super().__init__(message or f"invalid {field}")
        self.field = field


class UserRejectedError(CipherFeedError):
    kind = "user_rejected"


class TransactionFailedError(CipherFeedError):
    kind = "transaction_failed"


class ProofVerificationError(CipherFeedError):
    kind = "proof_verification"


class OperationInProgressError(CipherFeedError):
    kind = "in_progress"


class AlreadyVerifiedRace(CipherFeedError):
    """Another caller verified the record first. Not a user-facing error."""

    kind = "already_verified"


def _reason_of(exc: BaseException) -> str:
    reason = getattr(exc, "reason", "") or ""
    return f"{reason} {exc}".lower()


def is_user_rejection(exc: BaseException) -> bool:
    if isinstance(exc, UserRejectedError):
        return True
    text = _reason_of(exc)
    return any(marker in text for marker in USER_REJECTED_MARKERS)


def is_already_verified(exc: BaseException) -> bool:
    if isinstance(exc, AlreadyVerifiedRace):
        return True
    text = _reason_of(exc)
    return any(marker in text for marker in ALREADY_VERIFIED_MARKERS)


def classify_failure(
    exc: BaseException,
    default: type[CipherFeedError] = TransactionFailedError,
    message: str = "",
) -> CipherFeedError:
    """Map an arbitrary collaborator exception onto the taxonomy.

    Order matters: the already-verified race wins over user rejection,
    which wins over ``default``. Exceptions that are already part of the
    taxonomy (other than the two special cases) pass through untouched.
    """
    if is_already_verified(exc):
        return AlreadyVerifiedRace("record already verified", reason=str(exc))
    if is_user_rejection(exc):
        return UserRejectedError("Transaction rejected", reason=str(exc))
    if isinstance(exc, CipherFeedError):
        return exc
    return default(message or default.kind, reason=str(exc))


__all__ = [
    "AlreadyVerifiedRace",
    "CipherFeedError",
    "NotConnectedError",
    "OperationInProgressError",
    "ProofVerificationError",
    "SessionInitError",
    "TransactionFailedError",
    "UserRejectedError",
    "ValidationError",
    "classify_failure",
    "is_already_verified",
    "is_user_rejection",
]
