"""
Session Manager - Device sessions, device caps and refresh-token rotation.

NO DICTIONARIES - Sessions are ORM rows, results are typed dataclasses.

Sole writer of UserSession rows. Session creation locks the owning user row,
so two concurrent logins for one user cannot both see a free slot.
"""

from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import User, UserSession
from app.db.session import store_errors
from app.exceptions import AccountSuspendedError, InvalidSessionError, NotFoundError
from app.models.api import LoginMethod, SessionRevokeReason
from app.models.domain import DeviceInfo, Eviction, SessionTokens
from app.observability.metrics import metrics
from app.services.tokens import TokenService

logger = get_logger(__name__)


def plan_evictions(
    active_sessions: Sequence[UserSession], max_devices: int, now: datetime
) -> list[Eviction]:
    """
    Choose which active sessions to deactivate before inserting a new one.

    Expired sessions go first. Then the least recently active sessions
    (lowest id on ties) until at most max_devices - 1 remain.
    """
    if max_devices < 1:
        raise ValueError(f"max_devices must be at least 1, got {max_devices}")

    expired = [s for s in active_sessions if s.is_expired(now)]
    live = sorted(
        (s for s in active_sessions if not s.is_expired(now)),
        key=lambda s: (s.last_active, s.id),
    )

    evictions = [Eviction(session_id=s.id, reason=SessionRevokeReason.EXPIRED) for s in expired]
    overflow = len(live) - (max_devices - 1)
    if overflow > 0:
        evictions.extend(
            Eviction(session_id=s.id, reason=SessionRevokeReason.DEVICE_LIMIT)
            for s in live[:overflow]
        )
    return evictions


class SessionManager:
    """Creates, refreshes and revokes device sessions."""

    def __init__(
        self,
        db: AsyncSession,
        tokens: TokenService,
        session_ttl: timedelta | None = timedelta(days=7),
    ) -> None:
        self.db = db
        self.tokens = tokens
        self.session_ttl = session_ttl

    def _deactivate(self, session: UserSession, reason: SessionRevokeReason, now: datetime) -> None:
        session.is_active = False
        session.revoked_at = now
        session.revoked_reason = reason.value

    def _issue(self, session: UserSession, role_slug: str, now: datetime) -> SessionTokens:
        return SessionTokens(
            session_id=session.id,
            access_token=self.tokens.issue_access_token(
                session.user_id, role_slug, session.id, now=now
            ),
            refresh_token=session.refresh_token,
            access_expires_in=self.tokens.access_ttl_seconds,
            session_expires_at=session.expires_at,
        )

    async def create_session(
        self,
        user_id: int,
        device: DeviceInfo,
        login_method: LoginMethod,
        now: datetime | None = None,
    ) -> SessionTokens:
        """
        Persist a new session for user_id and issue its token pair.

        Evicts sessions first so the active count never exceeds the user's
        max_devices. Commits the caller's open transaction.

        Raises:
            NotFoundError: User does not exist
            AccountSuspendedError: User may not hold sessions
            StoreUnavailableError: Store did not answer in time
        """
        now = now or datetime.now(UTC)

        async with store_errors(self.db, "session_create"):
            result = await self.db.execute(
                select(User).where(User.id == user_id).with_for_update(of=User)
            )
            user = result.scalar_one_or_none()
            if user is None:
                await self.db.rollback()
                raise NotFoundError("user", f"User {user_id} not found")
            if not user.can_authenticate:
                await self.db.rollback()
                raise AccountSuspendedError(user.id, user.status)

            result = await self.db.execute(
                select(UserSession)
                .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
                .order_by(UserSession.last_active.asc(), UserSession.id.asc())
            )
            active = list(result.scalars().all())

            evictions = plan_evictions(active, user.max_devices, now)
            by_id = {s.id: s for s in active}
            for eviction in evictions:
                self._deactivate(by_id[eviction.session_id], eviction.reason, now)

            session = UserSession(
                user_id=user_id,
                refresh_token=self.tokens.issue_refresh_token(),
                push_token=device.push_token,
                device_id=device.device_id,
                device_name=device.device_name,
                user_agent=device.user_agent,
                ip_address=device.ip_address,
                login_method=login_method.value,
                is_active=True,
                last_active=now,
                expires_at=now + self.session_ttl if self.session_ttl else None,
                created_at=now,
            )
            self.db.add(session)
            await self.db.flush()

            issued = self._issue(session, user.role_slug, now)
            await self.db.commit()

        evicted_counts = Counter(e.reason.value for e in evictions)
        metrics.record_session_created(login_method.value, dict(evicted_counts))
        logger.info(
            "session_created",
            user_id=user_id,
            session_id=session.id,
            login_method=login_method.value,
            device_id=device.device_id,
            evicted=[e.session_id for e in evictions],
            max_devices=user.max_devices,
        )
        return issued

    async def refresh(self, refresh_token: str, now: datetime | None = None) -> SessionTokens:
        """
        Rotate the refresh token of an active session and issue a new access token.

        The previous refresh token stops working as soon as this commits.

        Raises:
            InvalidSessionError: Token unknown, session inactive or expired, or
                owner can no longer authenticate
            StoreUnavailableError: Store did not answer in time
        """
        now = now or datetime.now(UTC)

        async with store_errors(self.db, "session_refresh"):
            result = await self.db.execute(
                select(UserSession)
                .where(UserSession.refresh_token == refresh_token)
                .with_for_update()
            )
            session = result.scalar_one_or_none()

            if session is None or not session.is_active:
                await self.db.rollback()
                metrics.record_session_refreshed("invalid")
                logger.info("session_refresh_rejected", reason="unknown_or_inactive")
                raise InvalidSessionError()

            if session.is_expired(now):
                self._deactivate(session, SessionRevokeReason.EXPIRED, now)
                await self.db.commit()
                metrics.record_session_refreshed("expired")
                logger.info("session_refresh_rejected", reason="expired", session_id=session.id)
                raise InvalidSessionError()

            result = await self.db.execute(select(User).where(User.id == session.user_id))
            user = result.scalar_one_or_none()
            if user is None or not user.can_authenticate:
                self._deactivate(session, SessionRevokeReason.ACCOUNT_DISABLED, now)
                await self.db.commit()
                metrics.record_session_refreshed("account_disabled")
                logger.warning(
                    "session_refresh_rejected",
                    reason="account_disabled",
                    session_id=session.id,
                    user_id=session.user_id,
                )
                raise InvalidSessionError()

            session.refresh_token = self.tokens.issue_refresh_token()
            session.last_active = now
            issued = self._issue(session, user.role_slug, now)
            await self.db.commit()

        metrics.record_session_refreshed("rotated")
        logger.info("session_refreshed", session_id=session.id, user_id=session.user_id)
        return issued

    async def revoke(
        self,
        refresh_token: str,
        reason: SessionRevokeReason = SessionRevokeReason.LOGOUT,
        now: datetime | None = None,
    ) -> bool:
        """
        Deactivate the session holding refresh_token.

        Idempotent: unknown or already inactive tokens return False.
        Store failures still raise StoreUnavailableError.
        """
        now = now or datetime.now(UTC)

        async with store_errors(self.db, "session_revoke"):
            result = await self.db.execute(
                update(UserSession)
                .where(
                    UserSession.refresh_token == refresh_token,
                    UserSession.is_active.is_(True),
                )
                .values(is_active=False, revoked_at=now, revoked_reason=reason.value)
            )
            await self.db.commit()

        revoked = result.rowcount > 0
        metrics.record_session_revoked(reason.value, result.rowcount)
        logger.info("session_revoked", revoked=revoked, reason=reason.value)
        return revoked

    async def revoke_all(
        self,
        user_id: int,
        reason: SessionRevokeReason = SessionRevokeReason.LOGOUT_ALL,
        now: datetime | None = None,
    ) -> int:
        """Deactivate every active session of a user. Returns how many changed."""
        now = now or datetime.now(UTC)

        async with store_errors(self.db, "session_revoke_all"):
            result = await self.db.execute(
                update(UserSession)
                .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
                .values(is_active=False, revoked_at=now, revoked_reason=reason.value)
            )
            await self.db.commit()

        metrics.record_session_revoked(reason.value, result.rowcount)
        logger.info("sessions_revoked_all", user_id=user_id, count=result.rowcount, reason=reason.value)
        return result.rowcount

    async def revoke_session(
        self,
        user_id: int,
        session_id: int,
        reason: SessionRevokeReason = SessionRevokeReason.LOGOUT,
        now: datetime | None = None,
    ) -> None:
        """
        Deactivate one of the user's own sessions (manage devices).

        Raises:
            NotFoundError: No active session with that id belongs to the user
        """
        now = now or datetime.now(UTC)

        async with store_errors(self.db, "session_revoke_one"):
            result = await self.db.execute(
                update(UserSession)
                .where(
                    UserSession.id == session_id,
                    UserSession.user_id == user_id,
                    UserSession.is_active.is_(True),
                )
                .values(is_active=False, revoked_at=now, revoked_reason=reason.value)
            )
            if result.rowcount == 0:
                await self.db.rollback()
                raise NotFoundError("session", "Session not found")
            await self.db.commit()

        metrics.record_session_revoked(reason.value)
        logger.info("session_revoked", user_id=user_id, session_id=session_id, reason=reason.value)

    async def list_active(self, user_id: int, now: datetime | None = None) -> list[UserSession]:
        """Active, unexpired sessions, most recently active first."""
        now = now or datetime.now(UTC)

        async with store_errors(self.db, "session_list"):
            result = await self.db.execute(
                select(UserSession)
                .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
                .order_by(UserSession.last_active.desc(), UserSession.id.desc())
            )
            sessions = result.scalars().all()

        return [s for s in sessions if not s.is_expired(now)]

    async def is_active(self, session_id: int, now: datetime | None = None) -> bool:
        """Liveness check used by the authorization gate."""
        now = now or datetime.now(UTC)

        async with store_errors(self.db, "session_liveness"):
            result = await self.db.execute(
                select(UserSession.expires_at).where(
                    UserSession.id == session_id, UserSession.is_active.is_(True)
                )
            )
            row = result.one_or_none()

        if row is None:
            return False
        expires_at = row[0]
        return expires_at is None or expires_at > now

    async def deactivate_expired(self, now: datetime | None = None) -> int:
        """Maintenance: mark lapsed sessions inactive."""
        now = now or datetime.now(UTC)

        async with store_errors(self.db, "session_deactivate_expired"):
            result = await self.db.execute(
                update(UserSession)
                .where(
                    UserSession.is_active.is_(True),
                    UserSession.expires_at.is_not(None),
                    UserSession.expires_at <= now,
                )
                .values(
                    is_active=False,
                    revoked_at=now,
                    revoked_reason=SessionRevokeReason.EXPIRED.value,
                )
            )
            await self.db.commit()

        metrics.record_session_revoked(SessionRevokeReason.EXPIRED.value, result.rowcount)
        logger.info("sessions_expired_deactivated", count=result.rowcount)
        return result.rowcount
