"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime

from app.models.api import (
    LoginMethod,
    OtpChannel,
    OtpPurpose,
    SessionRevokeReason,
    UserResponse,
)


@dataclass(frozen=True)
class DeviceInfo:
    """Where a login came from. Stored on the session row."""

    device_id: str | None = None
    device_name: str | None = None
    push_token: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class AccessClaims:
    """Verified claims of an access token."""

    user_id: int
    role_slug: str
    session_id: int
    issued_at: datetime
    expires_at: datetime

    def __post_init__(self) -> None:
        """Validate claim constraints."""
        if self.user_id <= 0:
            raise ValueError(f"Invalid user_id: {self.user_id}")
        if not self.role_slug:
            raise ValueError("role_slug cannot be empty")


@dataclass(frozen=True)
class IssuedOtp:
    """A freshly issued OTP. The code leaves the process only via the notifier."""

    otp_id: int
    identifier: str
    purpose: OtpPurpose
    channel: OtpChannel
    code: str
    expires_at: datetime

    def __repr__(self) -> str:
        """Keep the code out of logs and tracebacks."""
        return (
            f"IssuedOtp(otp_id={self.otp_id}, identifier={self.identifier!r}, "
            f"purpose={self.purpose.value}, expires_at={self.expires_at.isoformat()})"
        )


@dataclass(frozen=True)
class OtpVerificationResult:
    """Successful OTP verification."""

    otp_id: int
    identifier: str
    purpose: OtpPurpose
    verified_at: datetime


@dataclass(frozen=True)
class SessionTokens:
    """Tokens paired with one persisted session."""

    session_id: int
    access_token: str
    refresh_token: str
    access_expires_in: int
    session_expires_at: datetime | None

    def __repr__(self) -> str:
        """Keep tokens out of logs and tracebacks."""
        return f"SessionTokens(session_id={self.session_id})"


@dataclass(frozen=True)
class Eviction:
    """A session the Session Manager must deactivate before inserting a new one."""

    session_id: int
    reason: SessionRevokeReason


@dataclass(frozen=True)
class SignupProfile:
    """Validated signup input."""

    full_name: str
    mobile: str
    country_code: str
    email: str | None
    password: str | None
    otp: str | None
    referral_code: str | None

    def __post_init__(self) -> None:
        """Validate signup constraints."""
        if not self.password and not self.otp:
            raise ValueError("Either password or otp is required")


@dataclass(frozen=True)
class PasswordCredentials:
    """Password login input."""

    password: str
    mobile: str | None = None
    country_code: str = "+91"
    email: str | None = None

    def __post_init__(self) -> None:
        """Validate login constraints."""
        if not self.mobile and not self.email:
            raise ValueError("Either mobile or email is required")


@dataclass(frozen=True)
class OtpCredentials:
    """OTP login input."""

    mobile: str
    code: str
    country_code: str = "+91"
    email: str | None = None


@dataclass(frozen=True)
class AuthOutcome:
    """Result of signup and login: the user projection plus the new session tokens."""

    user: UserResponse
    tokens: SessionTokens
    login_method: LoginMethod
