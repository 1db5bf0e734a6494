"""
Tests for the exception hierarchy and its HTTP mapping.
"""

import pytest

from app.api.errors import status_for
from app.exceptions import (
    AccountSuspendedError,
    ConflictError,
    DataIntegrityError,
    FieldError,
    ForbiddenError,
    IdentityError,
    InvalidCredentialsError,
    InvalidSessionError,
    InvalidTokenError,
    NotFoundError,
    OtpAlreadyInvalidError,
    OtpAlreadyVerifiedError,
    OtpError,
    OtpExpiredError,
    OtpMismatchError,
    OtpNotFoundError,
    OtpTooManyAttemptsError,
    RateLimitedError,
    StoreUnavailableError,
    TokenExpiredError,
    ValidationFailureError,
)


class TestExceptionAttributes:
    """Typed attributes and messages."""

    def test_validation_failure_summary(self):
        error = ValidationFailureError(
            [FieldError("mobile", "Invalid mobile"), FieldError("email", "Invalid email")]
        )
        assert len(error.errors) == 2
        assert "mobile: Invalid mobile" in str(error)
        assert "email: Invalid email" in str(error)

    def test_for_field(self):
        error = ValidationFailureError.for_field("referral_code", "Invalid referral code")
        assert error.errors == [FieldError("referral_code", "Invalid referral code")]

    def test_invalid_credentials_message_is_fixed(self):
        assert str(InvalidCredentialsError()) == "Invalid credentials"

    def test_rate_limited_carries_retry_after(self):
        error = RateLimitedError(120)
        assert error.retry_after_seconds == 120
        assert "120" in str(error)

    def test_otp_mismatch_counts(self):
        error = OtpMismatchError(attempts=2, attempts_remaining=3)
        assert error.attempts == 2
        assert error.attempts_remaining == 3
        assert "3 attempts remaining" in str(error)

    def test_not_found_default_message(self):
        assert str(NotFoundError("role")) == "role not found"

    def test_conflict_default_message(self):
        error = ConflictError("email")
        assert error.field == "email"
        assert str(error) == "email already registered"

    def test_store_unavailable_operation(self):
        assert StoreUnavailableError("session_create").operation == "session_create"

    def test_codes_are_unique(self):
        classes = [
            ValidationFailureError,
            InvalidCredentialsError,
            AccountSuspendedError,
            RateLimitedError,
            InvalidTokenError,
            TokenExpiredError,
            InvalidSessionError,
            ForbiddenError,
            NotFoundError,
            ConflictError,
            StoreUnavailableError,
            DataIntegrityError,
            OtpNotFoundError,
            OtpAlreadyInvalidError,
            OtpExpiredError,
            OtpMismatchError,
            OtpTooManyAttemptsError,
            OtpAlreadyVerifiedError,
        ]
        codes = [cls.code for cls in classes]
        assert len(codes) == len(set(codes))
        assert all(issubclass(cls, IdentityError) for cls in classes)


class TestStatusMapping:
    """HTTP status for each failure."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (ValidationFailureError.for_field("mobile", "bad"), 400),
            (InvalidCredentialsError(), 401),
            (InvalidTokenError(), 401),
            (TokenExpiredError(), 401),
            (InvalidSessionError(), 401),
            (AccountSuspendedError(1, "blocked"), 403),
            (ForbiddenError("admin"), 403),
            (NotFoundError("user"), 404),
            (ConflictError("mobile"), 409),
            (RateLimitedError(60), 429),
            (OtpTooManyAttemptsError(), 429),
            (OtpMismatchError(1, 4), 400),
            (OtpExpiredError(), 400),
            (OtpAlreadyInvalidError(), 400),
            (OtpNotFoundError(), 400),
            (OtpAlreadyVerifiedError(), 400),
            (StoreUnavailableError("login"), 503),
            (DataIntegrityError("missing role"), 500),
        ],
    )
    def test_status_for(self, error: IdentityError, expected: int):
        assert status_for(error) == expected

    def test_otp_errors_share_a_base(self):
        assert isinstance(OtpExpiredError(), OtpError)
