"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation problem."""

    field: str
    message: str


class IdentityError(Exception):
    """Base exception for all identity errors."""

    code = "identity_error"


class ValidationFailureError(IdentityError):
    """Raised when input is malformed or missing required fields."""

    code = "validation_failure"

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = errors
        summary = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Validation failed: {summary}")

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailureError":
        """Build a failure for one field."""
        return cls([FieldError(field=field, message=message)])


class InvalidCredentialsError(IdentityError):
    """
    Raised when an identity proof fails.

    The message is identical for unknown users, wrong passwords and
    wrong login OTPs so callers cannot enumerate accounts.
    """

    code = "invalid_credentials"

    def __init__(self) -> None:
        super().__init__("Invalid credentials")


class AccountSuspendedError(IdentityError):
    """Raised when a proven identity belongs to a blocked or suspended account."""

    code = "account_suspended"

    def __init__(self, user_id: int, status: str) -> None:
        self.user_id = user_id
        self.status = status
        super().__init__(f"Account {user_id} is {status}")


class RateLimitedError(IdentityError):
    """Raised when too many OTPs were requested for one identifier."""

    code = "rate_limited"

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Too many requests. Retry after {retry_after_seconds} seconds")


class InvalidTokenError(IdentityError):
    """Raised when an access token is malformed or its signature is wrong."""

    code = "invalid_token"

    def __init__(self, reason: str = "Invalid access token") -> None:
        self.reason = reason
        super().__init__(reason)


class TokenExpiredError(IdentityError):
    """Raised when an access token is past its lifetime."""

    code = "token_expired"

    def __init__(self) -> None:
        super().__init__("Access token expired")


class InvalidSessionError(IdentityError):
    """Raised when a refresh token has no active, unexpired session."""

    code = "invalid_session"

    def __init__(self) -> None:
        super().__init__("Invalid or expired session")


class ForbiddenError(IdentityError):
    """Raised when the caller's role or permissions do not allow an operation."""

    code = "forbidden"

    def __init__(self, required: str) -> None:
        self.required = required
        super().__init__(f"Access forbidden: requires {required}")


class NotFoundError(IdentityError):
    """Raised when a profile, role or session lookup finds nothing."""

    code = "not_found"

    def __init__(self, resource: str, message: str | None = None) -> None:
        self.resource = resource
        super().__init__(message or f"{resource} not found")


class ConflictError(IdentityError):
    """Raised when a uniqueness rule is violated."""

    code = "conflict"

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"{field} already registered")


class StoreUnavailableError(IdentityError):
    """Raised when the database cannot be reached in time. Retryable by the caller."""

    code = "store_unavailable"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Store unavailable during {operation}")


class DataIntegrityError(IdentityError):
    """Raised when seed data the service relies on is missing."""

    code = "data_integrity"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


# ============================================================================
# OTP verification outcomes
# ============================================================================


class OtpError(IdentityError):
    """Base class for OTP verification failures."""

    code = "otp_error"


class OtpNotFoundError(OtpError):
    """Raised when there is no active OTP for (identifier, purpose)."""

    code = "otp_not_found"

    def __init__(self) -> None:
        super().__init__("OTP not found. Please request a new one")


class OtpAlreadyInvalidError(OtpError):
    """Raised when the supplied code belongs to an OTP that was superseded."""

    code = "otp_already_invalid"

    def __init__(self) -> None:
        super().__init__("This OTP is no longer valid. Use the most recent code")


class OtpExpiredError(OtpError):
    """Raised when the active OTP is past its expiry."""

    code = "otp_expired"

    def __init__(self) -> None:
        super().__init__("OTP has expired. Please request a new one")


class OtpMismatchError(OtpError):
    """Raised when the supplied code does not match the active OTP."""

    code = "otp_mismatch"

    def __init__(self, attempts: int, attempts_remaining: int) -> None:
        self.attempts = attempts
        self.attempts_remaining = attempts_remaining
        super().__init__(f"Invalid OTP. {attempts_remaining} attempts remaining")


class OtpTooManyAttemptsError(OtpError):
    """Raised once the attempt ceiling is reached. The OTP stays unusable."""

    code = "otp_too_many_attempts"

    def __init__(self) -> None:
        super().__init__("Maximum OTP attempts exceeded. Please request a new one")


class OtpAlreadyVerifiedError(OtpError):
    """Raised when an already verified OTP is presented again."""

    code = "otp_already_verified"

    def __init__(self) -> None:
        super().__init__("OTP has already been used")
