"""
Token Service - Signed access tokens and opaque refresh tokens.

Owns no persisted state. Access tokens verify without touching the store;
refresh tokens carry no claims and are only meaningful next to a session row.
"""

import secrets
from datetime import UTC, datetime, timedelta

import jwt
from structlog import get_logger

from app.exceptions import InvalidTokenError, TokenExpiredError
from app.models.domain import AccessClaims

logger = get_logger(__name__)

TOKEN_TYPE_ACCESS = "access"


class TokenService:
    """Issues and verifies tokens with a process-wide signing secret."""

    def __init__(
        self,
        secret: str,
        access_ttl: timedelta,
        algorithm: str = "HS256",
        issuer: str = "classifieds-identity",
        refresh_token_bytes: int = 48,
    ) -> None:
        self.secret = secret
        self.access_ttl = access_ttl
        self.algorithm = algorithm
        self.issuer = issuer
        self.refresh_token_bytes = refresh_token_bytes

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.access_ttl.total_seconds())

    def issue_access_token(
        self,
        user_id: int,
        role_slug: str,
        session_id: int,
        now: datetime | None = None,
    ) -> str:
        """Short-lived signed token embedding user, role and session."""
        issued_at = now or datetime.now(UTC)
        payload = {
            "sub": str(user_id),
            "role": role_slug,
            "sid": session_id,
            "typ": TOKEN_TYPE_ACCESS,
            "iss": self.issuer,
            "iat": issued_at,
            "exp": issued_at + self.access_ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def issue_refresh_token(self) -> str:
        """High-entropy opaque value stored verbatim on the session row."""
        return secrets.token_urlsafe(self.refresh_token_bytes)

    def verify_access_token(self, token: str) -> AccessClaims:
        """
        Verify signature and lifetime, returning the embedded claims.

        Raises:
            TokenExpiredError: Token is past its lifetime
            InvalidTokenError: Bad signature, wrong issuer or malformed claims
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"require": ["sub", "role", "sid", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            logger.debug("access_token_expired")
            raise TokenExpiredError() from e
        except jwt.InvalidTokenError as e:
            logger.warning("access_token_invalid", error=str(e))
            raise InvalidTokenError() from e

        if payload.get("typ") != TOKEN_TYPE_ACCESS:
            raise InvalidTokenError("Token is not an access token")

        try:
            return AccessClaims(
                user_id=int(payload["sub"]),
                role_slug=str(payload["role"]),
                session_id=int(payload["sid"]),
                issued_at=datetime.fromtimestamp(payload["iat"], UTC),
                expires_at=datetime.fromtimestamp(payload["exp"], UTC),
            )
        except (TypeError, ValueError) as e:
            logger.warning("access_token_claims_malformed", error=str(e))
            raise InvalidTokenError("Malformed token claims") from e
