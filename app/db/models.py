"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Identity,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.models.api import KycStatus, UserStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Role(Base):
    """
    ORM model for roles table.

    The super_admin slug bypasses every authorization check.
    System roles cannot be deleted.
    """

    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, Identity(), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_system_role: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    permissions: Mapped[list["RolePermission"]] = relationship(
        back_populates="role", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (UniqueConstraint("slug", name="uq_roles_slug"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Role(id={self.id}, slug={self.slug}, priority={self.priority})>"


class Permission(Base):
    """ORM model for permissions table. One row per (resource, action)."""

    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, Identity(), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    resource: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    roles: Mapped[list["RolePermission"]] = relationship(
        back_populates="permission", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("slug", name="uq_permissions_slug"),
        UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Permission(id={self.id}, slug={self.slug})>"


class RolePermission(Base):
    """Join table between roles and permissions. Cascades on either side."""

    __tablename__ = "role_permissions"

    id: Mapped[int] = mapped_column(Integer, Identity(), primary_key=True)
    role_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    permission_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    role: Mapped[Role] = relationship(back_populates="permissions")
    permission: Mapped[Permission] = relationship(back_populates="roles")

    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_pair"),
        Index("idx_role_permissions_permission_id", "permission_id"),
    )


class User(Base):
    """
    ORM model for users table.

    Users are soft-disabled through status / is_active and never hard-deleted
    during normal operation.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, Identity(), primary_key=True)

    # Identity fields
    full_name: Mapped[str] = mapped_column(String(150), nullable=False)
    country_code: Mapped[str] = mapped_column(String(5), nullable=False, default="+91")
    mobile: Mapped[str] = mapped_column(String(15), nullable=False)
    email: Mapped[str | None] = mapped_column(String(150), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Authorization
    role_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("roles.id", ondelete="SET NULL"), nullable=True
    )

    # Status
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=UserStatus.ACTIVE.value)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Verification
    is_phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    phone_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    email_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    kyc_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=KycStatus.PENDING.value
    )

    # Device cap
    max_devices: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)

    # Referral
    referral_code: Mapped[str] = mapped_column(String(20), nullable=False)
    referred_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    role: Mapped[Role | None] = relationship(lazy="joined")
    referrer: Mapped["User | None"] = relationship(remote_side="User.id")

    __table_args__ = (
        CheckConstraint("max_devices >= 1", name="ck_users_max_devices_positive"),
        CheckConstraint(
            "status IN ('active', 'blocked', 'suspended', 'deleted')", name="ck_users_status"
        ),
        UniqueConstraint("country_code", "mobile", name="uq_users_country_mobile"),
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("referral_code", name="uq_users_referral_code"),
        Index("idx_users_mobile", "mobile"),
        Index("idx_users_role_id", "role_id"),
        Index("idx_users_status", "status"),
    )

    @property
    def role_slug(self) -> str:
        """Slug of the assigned role; users without a role are plain users."""
        return self.role.slug if self.role is not None else "user"

    @property
    def can_authenticate(self) -> bool:
        """Only active, non-disabled accounts may hold sessions."""
        return self.is_active and self.status == UserStatus.ACTIVE.value

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, mobile={self.country_code}{self.mobile}, status={self.status})>"


class UserSession(Base):
    """
    ORM model for user_sessions table.

    One row per authenticated device. The refresh token is the revocation
    anchor: a token is valid only while its row is active and unexpired.
    """

    __tablename__ = "user_sessions"

    id: Mapped[int] = mapped_column(BigInteger, Identity(), primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    refresh_token: Mapped[str] = mapped_column(String(128), nullable=False)
    push_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Device details
    device_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    device_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    login_method: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_active: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("refresh_token", name="uq_user_sessions_refresh_token"),
        Index(
            "idx_user_sessions_user_active",
            "user_id",
            "last_active",
            postgresql_where=(is_active.is_(True)),
        ),
    )

    def is_expired(self, now: datetime) -> bool:
        """Sessions without expires_at never expire on their own."""
        return self.expires_at is not None and self.expires_at <= now

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UserSession(id={self.id}, user_id={self.user_id}, "
            f"active={self.is_active}, last_active={self.last_active})>"
        )


class OtpVerification(Base):
    """
    ORM model for otp_verifications table.

    Codes are stored as HMAC digests, never in the clear. At most one
    unverified, uninvalidated, unexpired row exists per (identifier, purpose).
    """

    __tablename__ = "otp_verifications"

    id: Mapped[int] = mapped_column(BigInteger, Identity(), primary_key=True)

    identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    country_code: Mapped[str | None] = mapped_column(String(5), nullable=True)
    purpose: Mapped[str] = mapped_column(String(20), nullable=False)
    channel: Mapped[str] = mapped_column(String(10), nullable=False, default="sms")
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    invalidated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    invalidated_reason: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Request context
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ck_otp_attempts_non_negative"),
        CheckConstraint(
            "purpose IN ('signup', 'login', 'verification')", name="ck_otp_purpose"
        ),
        Index("idx_otp_identifier_purpose", "identifier", "purpose", "id"),
        Index("idx_otp_identifier_created", "identifier", "created_at"),
        Index("idx_otp_expires_at", "expires_at"),
    )

    @property
    def is_pending(self) -> bool:
        """Not yet verified and not invalidated."""
        return not self.is_verified and self.invalidated_at is None

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<OtpVerification(id={self.id}, identifier={self.identifier}, "
            f"purpose={self.purpose}, attempts={self.attempts}, verified={self.is_verified})>"
        )


class UserSocialAccount(Base):
    """ORM model for user_social_accounts table. Populated by social sign-in."""

    __tablename__ = "user_social_accounts"

    id: Mapped[int] = mapped_column(BigInteger, Identity(), primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(150), nullable=True)
    profile_picture_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("provider", "provider_id", name="uq_social_provider_provider_id"),
        Index("idx_user_social_accounts_user_id", "user_id"),
        Index(
            "uq_social_primary_per_user",
            "user_id",
            unique=True,
            postgresql_where=(is_primary.is_(True)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<UserSocialAccount(id={self.id}, provider={self.provider}, user_id={self.user_id})>"
