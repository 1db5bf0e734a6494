"""Identity schema: roles, permissions, users, sessions, OTPs, social accounts.

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    """Create identity tables."""
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer, sa.Identity(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("slug", sa.String(50), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_system_role", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("slug", name="uq_roles_slug"),
    )

    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer, sa.Identity(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("resource", sa.String(50), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("slug", name="uq_permissions_slug"),
        sa.UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    op.create_table(
        "role_permissions",
        sa.Column("id", sa.Integer, sa.Identity(), primary_key=True),
        sa.Column(
            "role_id",
            sa.Integer,
            sa.ForeignKey("roles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "permission_id",
            sa.Integer,
            sa.ForeignKey("permissions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_pair"),
    )
    op.create_index(
        "idx_role_permissions_permission_id", "role_permissions", ["permission_id"]
    )

    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger, sa.Identity(), primary_key=True),
        sa.Column("full_name", sa.String(150), nullable=False),
        sa.Column("country_code", sa.String(5), nullable=False, server_default="+91"),
        sa.Column("mobile", sa.String(15), nullable=False),
        sa.Column("email", sa.String(150), nullable=True),
        sa.Column("password_hash", sa.Text, nullable=True),
        sa.Column(
            "role_id",
            sa.Integer,
            sa.ForeignKey("roles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_phone_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_email_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("phone_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("kyc_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("max_devices", sa.SmallInteger, nullable=False, server_default="1"),
        sa.Column("referral_code", sa.String(20), nullable=False),
        sa.Column(
            "referred_by_id",
            sa.BigInteger,
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("max_devices >= 1", name="ck_users_max_devices_positive"),
        sa.CheckConstraint(
            "status IN ('active', 'blocked', 'suspended', 'deleted')", name="ck_users_status"
        ),
        sa.UniqueConstraint("country_code", "mobile", name="uq_users_country_mobile"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("referral_code", name="uq_users_referral_code"),
    )
    op.create_index("idx_users_mobile", "users", ["mobile"])
    op.create_index("idx_users_role_id", "users", ["role_id"])
    op.create_index("idx_users_status", "users", ["status"])

    op.create_table(
        "user_sessions",
        sa.Column("id", sa.BigInteger, sa.Identity(), primary_key=True),
        sa.Column(
            "user_id",
            sa.BigInteger,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("refresh_token", sa.String(128), nullable=False),
        sa.Column("push_token", sa.Text, nullable=True),
        sa.Column("device_id", sa.String(200), nullable=True),
        sa.Column("device_name", sa.String(200), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("login_method", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "last_active",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.String(30), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("refresh_token", name="uq_user_sessions_refresh_token"),
    )
    op.create_index(
        "idx_user_sessions_user_active",
        "user_sessions",
        ["user_id", "last_active"],
        postgresql_where=sa.text("is_active = true"),
    )

    op.create_table(
        "otp_verifications",
        sa.Column("id", sa.BigInteger, sa.Identity(), primary_key=True),
        sa.Column("identifier", sa.String(255), nullable=False),
        sa.Column("country_code", sa.String(5), nullable=True),
        sa.Column("purpose", sa.String(20), nullable=False),
        sa.Column("channel", sa.String(10), nullable=False, server_default="sms"),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.SmallInteger, nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("invalidated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invalidated_reason", sa.String(20), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("attempts >= 0", name="ck_otp_attempts_non_negative"),
        sa.CheckConstraint(
            "purpose IN ('signup', 'login', 'verification')", name="ck_otp_purpose"
        ),
    )
    op.create_index(
        "idx_otp_identifier_purpose", "otp_verifications", ["identifier", "purpose", "id"]
    )
    op.create_index(
        "idx_otp_identifier_created", "otp_verifications", ["identifier", "created_at"]
    )
    op.create_index("idx_otp_expires_at", "otp_verifications", ["expires_at"])

    op.create_table(
        "user_social_accounts",
        sa.Column("id", sa.BigInteger, sa.Identity(), primary_key=True),
        sa.Column(
            "user_id",
            sa.BigInteger,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("provider_id", sa.String(200), nullable=False),
        sa.Column("email", sa.String(150), nullable=True),
        sa.Column("profile_picture_url", sa.Text, nullable=True),
        sa.Column("is_primary", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("access_token", sa.Text, nullable=True),
        sa.Column("refresh_token", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("provider", "provider_id", name="uq_social_provider_provider_id"),
    )
    op.create_index("idx_user_social_accounts_user_id", "user_social_accounts", ["user_id"])
    op.create_index(
        "uq_social_primary_per_user",
        "user_social_accounts",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("is_primary = true"),
    )


def downgrade() -> None:
    """Drop identity tables."""
    op.drop_index("uq_social_primary_per_user", table_name="user_social_accounts")
    op.drop_index("idx_user_social_accounts_user_id", table_name="user_social_accounts")
    op.drop_table("user_social_accounts")

    op.drop_index("idx_otp_expires_at", table_name="otp_verifications")
    op.drop_index("idx_otp_identifier_created", table_name="otp_verifications")
    op.drop_index("idx_otp_identifier_purpose", table_name="otp_verifications")
    op.drop_table("otp_verifications")

    op.drop_index("idx_user_sessions_user_active", table_name="user_sessions")
    op.drop_table("user_sessions")

    op.drop_index("idx_users_status", table_name="users")
    op.drop_index("idx_users_role_id", table_name="users")
    op.drop_index("idx_users_mobile", table_name="users")
    op.drop_table("users")

    op.drop_index("idx_role_permissions_permission_id", table_name="role_permissions")
    op.drop_table("role_permissions")
    op.drop_table("permissions")
    op.drop_table("roles")
