"""
Panel API routes - Role administration and session management for staff.

Role-gated; super_admin passes every gate.
"""

from fastapi import APIRouter, Depends

from app.api.auth_dependencies import (
    get_role_service,
    get_session_manager,
    require_permission,
    require_roles,
)
from app.db.models import Role
from app.models.api import (
    ApiResponse,
    ChangeRoleRequest,
    RevokedSessionsData,
    RoleListData,
    RoleResponse,
    SessionRevokeReason,
    UserResponse,
)
from app.models.domain import AccessClaims
from app.services.auth import user_response
from app.services.authorization import SUPER_ADMIN_SLUG, RoleService
from app.services.sessions import SessionManager

router = APIRouter(prefix="/api/panel", tags=["panel"])


def role_response(role: Role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        slug=role.slug,
        priority=role.priority,
        is_system_role=role.is_system_role,
        is_active=role.is_active,
    )


@router.get("/roles", response_model=ApiResponse[RoleListData])
async def list_roles(
    identity: AccessClaims = Depends(require_roles("admin")),
    roles: RoleService = Depends(get_role_service),
) -> ApiResponse[RoleListData]:
    """Active roles, highest priority first."""
    data = RoleListData(roles=[role_response(r) for r in await roles.list_roles()])
    return ApiResponse(message="Data retrieved successfully", data=data)


@router.delete("/roles/{role_id}", response_model=ApiResponse[None])
async def delete_role(
    role_id: int,
    identity: AccessClaims = Depends(require_roles(SUPER_ADMIN_SLUG)),
    roles: RoleService = Depends(get_role_service),
) -> ApiResponse[None]:
    """Delete a non-system role."""
    await roles.delete_role(role_id)
    return ApiResponse(message="Role deleted")


@router.put("/users/{user_id}/role", response_model=ApiResponse[UserResponse])
async def change_user_role(
    user_id: int,
    request: ChangeRoleRequest,
    identity: AccessClaims = Depends(require_roles(SUPER_ADMIN_SLUG)),
    roles: RoleService = Depends(get_role_service),
) -> ApiResponse[UserResponse]:
    """Assign a role. New access tokens carry it; existing ones keep the old slug until refresh."""
    user = await roles.change_user_role(user_id, request.role_slug)
    return ApiResponse(message="Role updated", data=user_response(user))


@router.post("/users/{user_id}/sessions/revoke", response_model=ApiResponse[RevokedSessionsData])
async def revoke_user_sessions(
    user_id: int,
    identity: AccessClaims = Depends(require_roles("admin")),
    permitted: AccessClaims = Depends(require_permission("users.manage_sessions")),
    sessions: SessionManager = Depends(get_session_manager),
) -> ApiResponse[RevokedSessionsData]:
    """Force-logout a user from every device."""
    revoked = await sessions.revoke_all(user_id, reason=SessionRevokeReason.ADMIN)
    return ApiResponse(message="Sessions revoked", data=RevokedSessionsData(revoked=revoked))
