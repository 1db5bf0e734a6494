"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

MOBILE_PATTERN = r"^\d{10}$"
COUNTRY_CODE_PATTERN = r"^\+\d{1,4}$"


class UserStatus(str, Enum):
    """User account status enumeration."""

    ACTIVE = "active"
    BLOCKED = "blocked"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class KycStatus(str, Enum):
    """KYC review status enumeration."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OtpPurpose(str, Enum):
    """What an OTP proves possession for."""

    SIGNUP = "signup"
    LOGIN = "login"
    VERIFICATION = "verification"


class OtpChannel(str, Enum):
    """Out-of-band delivery channel for OTPs."""

    SMS = "sms"
    EMAIL = "email"


class LoginMethod(str, Enum):
    """How a session was established."""

    PASSWORD = "password"
    OTP = "otp"
    GOOGLE = "google"


class SessionRevokeReason(str, Enum):
    """Why a session stopped being active."""

    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"
    DEVICE_LIMIT = "device_limit"
    EXPIRED = "expired"
    ACCOUNT_DISABLED = "account_disabled"
    ADMIN = "admin"


class OtpInvalidationReason(str, Enum):
    """Why an unverified OTP can no longer be used."""

    SUPERSEDED = "superseded"
    MAX_ATTEMPTS = "max_attempts"


EMAIL_MAX_LENGTH = 150


def _normalise_email(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    value = value.strip().lower()
    if len(value) > EMAIL_MAX_LENGTH:
        raise ValueError(f"Email must be at most {EMAIL_MAX_LENGTH} characters")
    return value


# ============================================================================
# Envelope
# ============================================================================

T = TypeVar("T")


def _utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


class ApiResponse(BaseModel, Generic[T]):
    """Standard response envelope returned by every endpoint."""

    success: bool = True
    message: str
    data: T | None = None
    timestamp: str = Field(default_factory=_utc_timestamp)


class FieldErrorItem(BaseModel):
    """One field-level validation error."""

    field: str
    message: str


# ============================================================================
# Request Models
# ============================================================================


class DevicePayload(BaseModel):
    """Client-supplied device details for session tracking."""

    device_id: str | None = Field(None, max_length=200)
    device_name: str | None = Field(None, max_length=200)
    push_token: str | None = Field(None, max_length=4096)


class SignupRequest(BaseModel):
    """POST /api/auth/signup request body."""

    full_name: str = Field(..., min_length=2, max_length=150)
    mobile: str = Field(..., pattern=MOBILE_PATTERN)
    country_code: str = Field("+91", pattern=COUNTRY_CODE_PATTERN)
    email: EmailStr | None = None
    password: str | None = Field(None, min_length=6, max_length=128)
    otp: str | None = Field(None, pattern=r"^\d{4,8}$", description="Signup OTP, if verifying by code")
    referral_code: str | None = Field(None, min_length=4, max_length=20)
    device: DevicePayload = Field(default_factory=DevicePayload)

    @field_validator("full_name")
    @classmethod
    def strip_full_name(cls, v: str) -> str:
        """Full name must still be 2+ characters after trimming."""
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Full name must be at least 2 characters")
        return v

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v: Any) -> Any:
        """Trim and lowercase before address validation."""
        return _normalise_email(v)

    @model_validator(mode="after")
    def require_password_or_otp(self) -> "SignupRequest":
        """A signup must prove something: a password, an OTP, or both."""
        if not self.password and not self.otp:
            raise ValueError("Either password or otp is required")
        return self


class PasswordLoginRequest(BaseModel):
    """POST /api/auth/login request body."""

    mobile: str | None = Field(None, pattern=MOBILE_PATTERN)
    country_code: str = Field("+91", pattern=COUNTRY_CODE_PATTERN)
    email: EmailStr | None = None
    password: str = Field(..., min_length=1, max_length=128)
    device: DevicePayload = Field(default_factory=DevicePayload)

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v: Any) -> Any:
        """Trim and lowercase before address validation."""
        return _normalise_email(v)

    @model_validator(mode="after")
    def require_identifier(self) -> "PasswordLoginRequest":
        """Either mobile or email identifies the account."""
        if not self.mobile and not self.email:
            raise ValueError("Either mobile or email is required")
        return self


class OtpSendRequest(BaseModel):
    """POST /api/auth/otp/send request body."""

    mobile: str = Field(..., pattern=MOBILE_PATTERN)
    country_code: str = Field("+91", pattern=COUNTRY_CODE_PATTERN)
    email: EmailStr | None = None
    purpose: OtpPurpose
    full_name: str | None = Field(None, max_length=150)

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v: Any) -> Any:
        """Trim and lowercase before address validation."""
        return _normalise_email(v)


class OtpVerifyRequest(BaseModel):
    """POST /api/auth/otp/verify request body."""

    mobile: str = Field(..., pattern=MOBILE_PATTERN)
    country_code: str = Field("+91", pattern=COUNTRY_CODE_PATTERN)
    email: EmailStr | None = None
    otp: str = Field(..., pattern=r"^\d{4,8}$")
    purpose: OtpPurpose

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v: Any) -> Any:
        """Trim and lowercase before address validation."""
        return _normalise_email(v)


class OtpLoginRequest(BaseModel):
    """POST /api/auth/otp/login request body."""

    mobile: str = Field(..., pattern=MOBILE_PATTERN)
    country_code: str = Field("+91", pattern=COUNTRY_CODE_PATTERN)
    email: EmailStr | None = None
    otp: str = Field(..., pattern=r"^\d{4,8}$")
    device: DevicePayload = Field(default_factory=DevicePayload)

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v: Any) -> Any:
        """Trim and lowercase before address validation."""
        return _normalise_email(v)


class RefreshTokenRequest(BaseModel):
    """POST /api/auth/refresh-token and /api/auth/logout request body."""

    refresh_token: str = Field(..., min_length=1, max_length=512)


class ChangeRoleRequest(BaseModel):
    """PUT /api/panel/users/{user_id}/role request body."""

    role_slug: str = Field(..., min_length=1, max_length=50)


# ============================================================================
# Response Models
# ============================================================================


class UserResponse(BaseModel):
    """Public projection of a user."""

    id: int
    full_name: str
    mobile: str
    country_code: str
    email: str | None
    role: str
    status: UserStatus
    is_phone_verified: bool
    is_email_verified: bool
    kyc_status: KycStatus
    referral_code: str
    last_login_at: str | None = None
    created_at: str | None = None


class TokenResponse(BaseModel):
    """Token pair issued at signup, login and refresh."""

    access_token: str
    refresh_token: str
    token_type: Literal["Bearer"] = "Bearer"
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    session_id: int


class AuthData(BaseModel):
    """Data for signup and login responses."""

    user: UserResponse
    tokens: TokenResponse


class RefreshData(BaseModel):
    """Data for refresh-token responses."""

    tokens: TokenResponse


class OtpSentData(BaseModel):
    """Data for OTP send responses. The code itself is never returned."""

    purpose: OtpPurpose
    channel: OtpChannel
    mobile: str
    country_code: str
    email: str | None = None
    expires_in: int


class OtpVerifiedData(BaseModel):
    """Data for standalone OTP verification responses."""

    purpose: OtpPurpose
    mobile: str
    verified: bool = True


class SessionResponse(BaseModel):
    """One active device session."""

    id: int
    device_id: str | None
    device_name: str | None
    user_agent: str | None
    ip_address: str | None
    login_method: str | None
    last_active: str
    created_at: str
    expires_at: str | None
    is_current: bool = False


class SessionListData(BaseModel):
    """Active sessions of the current user."""

    sessions: list[SessionResponse]
    max_devices: int


class RevokedSessionsData(BaseModel):
    """How many sessions an operation deactivated."""

    revoked: int


class RoleResponse(BaseModel):
    """Role projection for the admin panel."""

    id: int
    name: str
    slug: str
    priority: int
    is_system_role: bool
    is_active: bool


class RoleListData(BaseModel):
    """Roles ordered by priority."""

    roles: list[RoleResponse]


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
