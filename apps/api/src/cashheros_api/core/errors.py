"""Typed service errors and the stable identifiers the API reports for them."""

from __future__ import annotations

from enum import Enum


class ServiceError(RuntimeError):
    """Base exception for domain failures surfaced to API callers."""

    identifier: str = "Unexpected"
    status_code: int = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.identifier)


class NotFoundError(ServiceError):
    identifier = "NotFound"
    status_code = 404


class ConflictError(ServiceError):
    """Uniqueness violation (duplicate coupon code, store name, email)."""

    identifier = "Conflict"
    status_code = 400


class ValidationFailure(ServiceError):
    identifier = "ValidationError"
    status_code = 400

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"Invalid value for {field}")
        self.field = field


class RedemptionErrorKind(str, Enum):
    INACTIVE = "Inactive"
    EXPIRED = "Expired"
    LIMIT_REACHED = "LimitReached"
    ALREADY_REDEEMED = "AlreadyRedeemed"


class RedemptionError(ServiceError):
    """A validity predicate on the coupon or the caller failed."""

    status_code = 400

    def __init__(self, kind: RedemptionErrorKind) -> None:
        super().__init__(kind.value)
        self.kind = kind

    @property
    def identifier(self) -> str:  # type: ignore[override]
        return self.kind.value


class InsufficientFundsError(ServiceError):
    identifier = "InsufficientFunds"
    status_code = 400


class InvalidTransitionError(ServiceError):
    identifier = "InvalidTransition"
    status_code = 400

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot transition from {current} to {requested}")
        self.current = current
        self.requested = requested


class AuthenticationError(ServiceError):
    identifier = "Unauthorized"
    status_code = 401


class InvalidCredentialsError(AuthenticationError):
    identifier = "InvalidCredentials"


class AccountLockedError(ServiceError):
    identifier = "AccountLocked"
    status_code = 403

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(f"Account locked for {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds


class AuthorizationError(ServiceError):
    identifier = "Forbidden"
    status_code = 403


class UnexpectedError(ServiceError):
    """Store unreachable or a post-commit reconciliation failure."""

    identifier = "Unexpected"
    status_code = 500


__all__ = [
    "AccountLockedError",
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "InsufficientFundsError",
    "InvalidCredentialsError",
    "InvalidTransitionError",
    "NotFoundError",
    "RedemptionError",
    "RedemptionErrorKind",
    "ServiceError",
    "UnexpectedError",
    "ValidationFailure",
]
