"""
Authorization - Role allow-lists, the super-admin bypass and permission lookups.

The bypass rule lives in is_super_admin and nowhere else.
"""

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Permission, Role, RolePermission, User
from app.db.session import store_errors
from app.exceptions import ForbiddenError, NotFoundError

logger = get_logger(__name__)

SUPER_ADMIN_SLUG = "super_admin"
DEFAULT_ROLE_SLUG = "user"


def is_super_admin(role_slug: str) -> bool:
    """The one role that passes every authorization check."""
    return role_slug == SUPER_ADMIN_SLUG


def role_allowed(role_slug: str, allowed: Iterable[str]) -> bool:
    return is_super_admin(role_slug) or role_slug in set(allowed)


def check_role(role_slug: str, allowed: Iterable[str]) -> None:
    """
    Enforce a role allow-list.

    Raises:
        ForbiddenError: Role is neither super_admin nor in allowed
    """
    allowed = tuple(allowed)
    if not role_allowed(role_slug, allowed):
        logger.warning("role_check_denied", role=role_slug, allowed=list(allowed))
        raise ForbiddenError(f"one of roles {', '.join(allowed)}")


class PermissionService:
    """Resolves resource.action permissions through role grants."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def role_has_permission(self, role_slug: str, permission_slug: str) -> bool:
        """True when an active role holds an active grant for permission_slug."""
        if is_super_admin(role_slug):
            return True

        async with store_errors(self.db, "permission_check"):
            stmt = (
                select(RolePermission.id)
                .join(Role, Role.id == RolePermission.role_id)
                .join(Permission, Permission.id == RolePermission.permission_id)
                .where(
                    Role.slug == role_slug,
                    Role.is_active.is_(True),
                    Permission.slug == permission_slug,
                    Permission.is_active.is_(True),
                )
                .limit(1)
            )
            result = await self.db.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def check_permission(self, role_slug: str, permission_slug: str) -> None:
        """
        Raises:
            ForbiddenError: Role lacks the permission
        """
        if not await self.role_has_permission(role_slug, permission_slug):
            logger.warning("permission_check_denied", role=role_slug, permission=permission_slug)
            raise ForbiddenError(f"permission {permission_slug}")

    async def permissions_for_role(self, role_slug: str) -> list[str]:
        """Active permission slugs granted to a role, sorted."""
        async with store_errors(self.db, "permission_list"):
            stmt = (
                select(Permission.slug)
                .join(RolePermission, RolePermission.permission_id == Permission.id)
                .join(Role, Role.id == RolePermission.role_id)
                .where(
                    Role.slug == role_slug,
                    Role.is_active.is_(True),
                    Permission.is_active.is_(True),
                )
                .order_by(Permission.slug)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())


class RoleService:
    """Role administration for the panel."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_active_role(self, slug: str) -> Role | None:
        async with store_errors(self.db, "role_lookup"):
            result = await self.db.execute(
                select(Role).where(Role.slug == slug, Role.is_active.is_(True))
            )
            return result.scalar_one_or_none()

    async def list_roles(self) -> list[Role]:
        """Active roles, highest priority first."""
        async with store_errors(self.db, "role_list"):
            result = await self.db.execute(
                select(Role)
                .where(Role.is_active.is_(True))
                .order_by(Role.priority.desc(), Role.id.asc())
            )
            return list(result.scalars().all())

    async def change_user_role(self, user_id: int, role_slug: str) -> User:
        """
        Assign an active role to a user.

        Raises:
            NotFoundError: User or active role not found
        """
        role = await self.get_active_role(role_slug)
        if role is None:
            raise NotFoundError("role", f"Role {role_slug} not found")

        async with store_errors(self.db, "role_assign"):
            result = await self.db.execute(select(User).where(User.id == user_id))
            user = result.scalar_one_or_none()
            if user is None:
                raise NotFoundError("user", f"User {user_id} not found")

            previous = user.role_slug
            user.role_id = role.id
            user.role = role
            await self.db.commit()

        logger.info("user_role_changed", user_id=user_id, previous_role=previous, new_role=role.slug)
        return user

    async def delete_role(self, role_id: int) -> None:
        """
        Delete a non-system role. Grants cascade.

        Raises:
            NotFoundError: Role not found
            ForbiddenError: Role is a system role
        """
        async with store_errors(self.db, "role_delete"):
            result = await self.db.execute(select(Role).where(Role.id == role_id))
            role = result.scalar_one_or_none()
            if role is None:
                raise NotFoundError("role", f"Role {role_id} not found")
            if role.is_system_role:
                logger.warning("system_role_delete_denied", role=role.slug)
                raise ForbiddenError("a non-system role")

            await self.db.delete(role)
            await self.db.commit()

        logger.info("role_deleted", role_id=role_id, slug=role.slug)
