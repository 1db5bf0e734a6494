"""Seed system roles and panel permissions.

Revision ID: 2026_10_19_0002
Revises: 2026_10_19_0001
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0002"
down_revision: str | None = "2026_10_19_0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# (name, slug, description, priority, is_system_role)
ROLES = [
    ("User", "user", "External users (buyers/sellers)", 0, True),
    ("Super Admin", "super_admin", "Full system access, manage roles and permissions", 100, True),
    ("Admin", "admin", "Approve listings, manage users", 80, False),
    ("Accountant", "accountant", "Financial management, billing, payments", 50, False),
    ("Marketing", "marketing", "Feature listings, promotions", 40, False),
    ("SEO", "seo", "Content optimization, meta tags", 30, False),
]

# (name, slug, resource, action)
PERMISSIONS = [
    ("View users", "users.view", "users", "view"),
    ("Manage user sessions", "users.manage_sessions", "users", "manage_sessions"),
    ("View roles", "roles.view", "roles", "view"),
    ("Manage roles", "roles.manage", "roles", "manage"),
]

ADMIN_PERMISSIONS = ("users.view", "users.manage_sessions", "roles.view")


def upgrade() -> None:
    """Insert seed roles, permissions and admin grants."""
    roles = sa.table(
        "roles",
        sa.column("name", sa.String),
        sa.column("slug", sa.String),
        sa.column("description", sa.Text),
        sa.column("priority", sa.Integer),
        sa.column("is_system_role", sa.Boolean),
        sa.column("is_active", sa.Boolean),
    )
    permissions = sa.table(
        "permissions",
        sa.column("name", sa.String),
        sa.column("slug", sa.String),
        sa.column("resource", sa.String),
        sa.column("action", sa.String),
        sa.column("is_active", sa.Boolean),
    )

    op.bulk_insert(
        roles,
        [
            {
                "name": name,
                "slug": slug,
                "description": description,
                "priority": priority,
                "is_system_role": is_system_role,
                "is_active": True,
            }
            for name, slug, description, priority, is_system_role in ROLES
        ],
    )
    op.bulk_insert(
        permissions,
        [
            {"name": name, "slug": slug, "resource": resource, "action": action, "is_active": True}
            for name, slug, resource, action in PERMISSIONS
        ],
    )

    op.execute(
        sa.text(
            """
            INSERT INTO role_permissions (role_id, permission_id)
            SELECT r.id, p.id FROM roles r CROSS JOIN permissions p
            WHERE r.slug = 'admin' AND p.slug = ANY(:slugs)
            """
        ).bindparams(sa.bindparam("slugs", value=list(ADMIN_PERMISSIONS)))
    )


def downgrade() -> None:
    """Remove seed data."""
    op.execute(
        sa.text("DELETE FROM permissions WHERE slug = ANY(:slugs)").bindparams(
            sa.bindparam("slugs", value=[p[1] for p in PERMISSIONS])
        )
    )
    op.execute(
        sa.text("DELETE FROM roles WHERE slug = ANY(:slugs)").bindparams(
            sa.bindparam("slugs", value=[r[1] for r in ROLES])
        )
    )
