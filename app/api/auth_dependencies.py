"""
Auth dependencies - Service wiring and the per-request authorization gate.

Provides FastAPI dependencies for bearer-token validation, role allow-lists
and permission checks.
"""

from collections.abc import Awaitable, Callable
from datetime import timedelta
from functools import lru_cache

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings, get_settings
from app.db.session import get_db
from app.exceptions import InvalidSessionError, InvalidTokenError
from app.models.domain import AccessClaims, DeviceInfo
from app.services.auth import AuthService
from app.services.authorization import PermissionService, RoleService, check_role
from app.services.notifications import Notifier, build_notifier
from app.services.otp import OtpEngine, OtpPolicy
from app.services.passwords import PasswordService
from app.services.sessions import SessionManager
from app.services.tokens import TokenService

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "


# ============================================================================
# Service wiring
# ============================================================================


@lru_cache
def get_token_service() -> TokenService:
    """Process-wide token service (stateless apart from the secret)."""
    settings = get_settings()
    return TokenService(
        secret=settings.jwt_secret,
        access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
        algorithm=settings.jwt_algorithm,
        issuer=settings.jwt_issuer,
        refresh_token_bytes=settings.refresh_token_bytes,
    )


@lru_cache
def get_password_service() -> PasswordService:
    return PasswordService()


@lru_cache
def get_notifier() -> Notifier:
    return build_notifier(get_settings())


def get_session_manager(
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_settings),
) -> SessionManager:
    return SessionManager(db, tokens, session_ttl=timedelta(days=settings.session_ttl_days))


def get_otp_engine(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OtpEngine:
    return OtpEngine(db, secret=settings.jwt_secret, policy=OtpPolicy.from_settings(settings))


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    passwords: PasswordService = Depends(get_password_service),
    otp: OtpEngine = Depends(get_otp_engine),
    sessions: SessionManager = Depends(get_session_manager),
    notifier: Notifier = Depends(get_notifier),
) -> AuthService:
    return AuthService(db, settings, passwords, otp, sessions, notifier)


def get_role_service(db: AsyncSession = Depends(get_db)) -> RoleService:
    return RoleService(db)


def get_permission_service(db: AsyncSession = Depends(get_db)) -> PermissionService:
    return PermissionService(db)


def get_device_info(request: Request) -> DeviceInfo:
    """Client address and agent of the current request. Body device fields are merged by routes."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip_address: str | None = forwarded_for.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return DeviceInfo(user_agent=request.headers.get("User-Agent"), ip_address=ip_address)


# ============================================================================
# Authorization gate
# ============================================================================


def extract_bearer_token(authorization: str | None) -> str:
    """
    Raises:
        InvalidTokenError: Header missing or not of the form "Bearer <token>"
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise InvalidTokenError("Missing or malformed Authorization header")
    token = authorization[len(BEARER_PREFIX) :].strip()
    if not token:
        raise InvalidTokenError("Missing or malformed Authorization header")
    return token


async def get_current_identity(
    request: Request,
    authorization: str | None = Header(None),
    tokens: TokenService = Depends(get_token_service),
    sessions: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
) -> AccessClaims:
    """
    Resolve the caller from the bearer token.

    Header and signature are checked before any store access. With
    ENFORCE_SESSION_LIVENESS the linked session must also still be active.

    Raises:
        InvalidTokenError / TokenExpiredError: Bad or lapsed token (401)
        InvalidSessionError: Session revoked while liveness is enforced (401)
    """
    token = extract_bearer_token(authorization)
    claims = tokens.verify_access_token(token)

    if settings.enforce_session_liveness and not await sessions.is_active(claims.session_id):
        logger.info("access_token_session_inactive", user_id=claims.user_id, session_id=claims.session_id)
        raise InvalidSessionError()

    request.state.identity = claims
    return claims


def require_roles(*allowed: str) -> Callable[..., Awaitable[AccessClaims]]:
    """
    Dependency factory: caller's role must be in allowed (super_admin always passes).

    Usage:
        @router.get("/roles")
        async def list_roles(identity: AccessClaims = Depends(require_roles("admin"))):
            ...
    """

    async def dependency(identity: AccessClaims = Depends(get_current_identity)) -> AccessClaims:
        check_role(identity.role_slug, allowed)
        return identity

    return dependency


def require_permission(permission_slug: str) -> Callable[..., Awaitable[AccessClaims]]:
    """Dependency factory: caller's role must hold permission_slug (super_admin always passes)."""

    async def dependency(
        identity: AccessClaims = Depends(get_current_identity),
        permissions: PermissionService = Depends(get_permission_service),
    ) -> AccessClaims:
        await permissions.check_permission(identity.role_slug, permission_slug)
        return identity

    return dependency
