"""
Tests for SessionManager and eviction planning.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from app.db.models import UserSession
from app.exceptions import (
    AccountSuspendedError,
    InvalidSessionError,
    NotFoundError,
    StoreUnavailableError,
)
from app.models.api import LoginMethod, SessionRevokeReason, UserStatus
from app.models.domain import DeviceInfo
from app.services.sessions import SessionManager, plan_evictions
from app.services.tokens import TokenService
from tests.conftest import FIXED_NOW, create_session_row, create_user, make_result

# ============================================================================
# plan_evictions
# ============================================================================


class TestPlanEvictions:
    """Tests for the pure eviction planner."""

    def test_no_sessions(self):
        assert plan_evictions([], 1, FIXED_NOW) == []

    def test_single_device_evicts_existing(self):
        existing = create_session_row(1)

        evictions = plan_evictions([existing], 1, FIXED_NOW)

        assert [e.session_id for e in evictions] == [1]
        assert evictions[0].reason == SessionRevokeReason.DEVICE_LIMIT

    def test_room_left_evicts_nothing(self):
        sessions = [create_session_row(1), create_session_row(2)]
        assert plan_evictions(sessions, 3, FIXED_NOW) == []

    def test_least_recently_active_goes_first(self):
        sessions = [
            create_session_row(1, last_active=FIXED_NOW - timedelta(minutes=5)),
            create_session_row(2, last_active=FIXED_NOW - timedelta(hours=3)),
            create_session_row(3, last_active=FIXED_NOW - timedelta(hours=1)),
        ]

        evictions = plan_evictions(sessions, 2, FIXED_NOW)

        assert [e.session_id for e in evictions] == [2, 3]

    def test_ties_broken_by_lowest_id(self):
        same = FIXED_NOW - timedelta(hours=1)
        sessions = [create_session_row(9, last_active=same), create_session_row(4, last_active=same)]

        evictions = plan_evictions(sessions, 2, FIXED_NOW)

        assert [e.session_id for e in evictions] == [4]

    def test_expired_sessions_evicted_first(self):
        """Expired sessions are cleared and do not count toward the cap."""
        sessions = [
            create_session_row(1, expires_at=FIXED_NOW - timedelta(minutes=1)),
            create_session_row(2),
        ]

        evictions = plan_evictions(sessions, 2, FIXED_NOW)

        assert [(e.session_id, e.reason) for e in evictions] == [(1, SessionRevokeReason.EXPIRED)]

    def test_sessions_without_expiry_never_expire(self):
        sessions = [create_session_row(1, expires_at=None)]
        assert plan_evictions(sessions, 2, FIXED_NOW) == []

    def test_rejects_zero_cap(self):
        with pytest.raises(ValueError, match="max_devices"):
            plan_evictions([], 0, FIXED_NOW)


# ============================================================================
# create_session
# ============================================================================


class TestCreateSession:
    """Tests for SessionManager.create_session."""

    @pytest.mark.asyncio
    async def test_issues_token_pair(
        self,
        session_manager: SessionManager,
        token_service: TokenService,
        db_session: AsyncMock,
        device: DeviceInfo,
    ):
        now = datetime.now(UTC)
        user = create_user(user_id=5)
        db_session.execute.return_value = make_result(scalar=user, scalars=[])

        tokens = await session_manager.create_session(5, device, LoginMethod.PASSWORD, now=now)

        session = db_session.added[0]
        assert isinstance(session, UserSession)
        assert session.refresh_token == tokens.refresh_token
        assert session.device_id == "pixel-8"
        assert session.login_method == "password"
        assert session.expires_at == now + timedelta(days=7)

        claims = token_service.verify_access_token(tokens.access_token)
        assert claims.user_id == 5
        assert claims.session_id == session.id == tokens.session_id
        assert claims.role_slug == "user"
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_single_device_login_replaces_previous(
        self, session_manager: SessionManager, db_session: AsyncMock, device: DeviceInfo
    ):
        """Logging in on device Y deactivates the session from device X."""
        user = create_user(max_devices=1)

        db_session.execute.return_value = make_result(scalar=user, scalars=[])
        first = await session_manager.create_session(1, device, LoginMethod.PASSWORD, now=FIXED_NOW)
        session_x = db_session.added[0]

        later = FIXED_NOW + timedelta(minutes=30)
        db_session.execute.return_value = make_result(scalar=user, scalars=[session_x])
        second = await session_manager.create_session(1, device, LoginMethod.OTP, now=later)
        session_y = db_session.added[1]

        assert session_x.is_active is False
        assert session_x.revoked_reason == SessionRevokeReason.DEVICE_LIMIT.value
        assert session_x.revoked_at == later
        assert session_y.is_active is True
        assert first.session_id != second.session_id

    @pytest.mark.asyncio
    async def test_larger_cap_keeps_other_devices(
        self, session_manager: SessionManager, db_session: AsyncMock, device: DeviceInfo
    ):
        user = create_user(max_devices=3)
        existing = [create_session_row(1), create_session_row(2)]
        db_session.execute.return_value = make_result(scalar=user, scalars=existing)

        await session_manager.create_session(1, device, LoginMethod.PASSWORD, now=FIXED_NOW)

        assert all(s.is_active for s in existing)

    @pytest.mark.asyncio
    async def test_unknown_user(
        self, session_manager: SessionManager, db_session: AsyncMock, device: DeviceInfo
    ):
        db_session.execute.return_value = make_result(scalar=None)

        with pytest.raises(NotFoundError):
            await session_manager.create_session(99, device, LoginMethod.PASSWORD, now=FIXED_NOW)

        db_session.add.assert_not_called()
        db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_suspended_user(
        self, session_manager: SessionManager, db_session: AsyncMock, device: DeviceInfo
    ):
        user = create_user(status=UserStatus.SUSPENDED)
        db_session.execute.return_value = make_result(scalar=user)

        with pytest.raises(AccountSuspendedError):
            await session_manager.create_session(1, device, LoginMethod.PASSWORD, now=FIXED_NOW)

        db_session.add.assert_not_called()


# ============================================================================
# refresh
# ============================================================================


class TestRefresh:
    """Tests for SessionManager.refresh."""

    @pytest.mark.asyncio
    async def test_rotates_refresh_token(self, session_manager: SessionManager, db_session: AsyncMock):
        """The old refresh token is replaced; expiry stays absolute."""
        session = create_session_row(3, refresh_token="old-token")
        original_expiry = session.expires_at
        db_session.execute.side_effect = [make_result(scalar=session), make_result(scalar=create_user())]

        tokens = await session_manager.refresh("old-token", now=FIXED_NOW)

        assert tokens.refresh_token != "old-token"
        assert session.refresh_token == tokens.refresh_token
        assert session.last_active == FIXED_NOW
        assert session.expires_at == original_expiry
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rotated_token_no_longer_works(
        self, session_manager: SessionManager, db_session: AsyncMock
    ):
        """After rotation the store no longer finds the old token."""
        session = create_session_row(3, refresh_token="old-token")
        db_session.execute.side_effect = [
            make_result(scalar=session),
            make_result(scalar=create_user()),
            make_result(scalar=None),
        ]

        await session_manager.refresh("old-token", now=FIXED_NOW)

        with pytest.raises(InvalidSessionError):
            await session_manager.refresh("old-token", now=FIXED_NOW)

    @pytest.mark.asyncio
    async def test_inactive_session_rejected(
        self, session_manager: SessionManager, db_session: AsyncMock
    ):
        session = create_session_row(3, is_active=False)
        db_session.execute.return_value = make_result(scalar=session)

        with pytest.raises(InvalidSessionError):
            await session_manager.refresh(session.refresh_token, now=FIXED_NOW)

        db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_session_deactivated(
        self, session_manager: SessionManager, db_session: AsyncMock
    ):
        session = create_session_row(3, expires_at=FIXED_NOW - timedelta(seconds=1))
        db_session.execute.return_value = make_result(scalar=session)

        with pytest.raises(InvalidSessionError):
            await session_manager.refresh(session.refresh_token, now=FIXED_NOW)

        assert session.is_active is False
        assert session.revoked_reason == SessionRevokeReason.EXPIRED.value
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_blocked_user_cannot_refresh(
        self, session_manager: SessionManager, db_session: AsyncMock
    ):
        session = create_session_row(3)
        blocked = create_user(status=UserStatus.BLOCKED)
        db_session.execute.side_effect = [make_result(scalar=session), make_result(scalar=blocked)]

        with pytest.raises(InvalidSessionError):
            await session_manager.refresh(session.refresh_token, now=FIXED_NOW)

        assert session.is_active is False
        assert session.revoked_reason == SessionRevokeReason.ACCOUNT_DISABLED.value


# ============================================================================
# revoke / list / liveness
# ============================================================================


class TestRevoke:
    """Tests for session revocation."""

    @pytest.mark.asyncio
    async def test_revoke_known_token(self, session_manager: SessionManager, db_session: AsyncMock):
        db_session.execute.return_value = make_result(rowcount=1)

        assert await session_manager.revoke("refresh-1", now=FIXED_NOW) is True
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, session_manager: SessionManager, db_session: AsyncMock):
        """Unknown or already revoked tokens are not an error."""
        db_session.execute.return_value = make_result(rowcount=0)

        assert await session_manager.revoke("unknown", now=FIXED_NOW) is False

    @pytest.mark.asyncio
    async def test_revoke_surfaces_store_failure(
        self, session_manager: SessionManager, db_session: AsyncMock
    ):
        db_session.execute.side_effect = TimeoutError()

        with pytest.raises(StoreUnavailableError):
            await session_manager.revoke("refresh-1", now=FIXED_NOW)

    @pytest.mark.asyncio
    async def test_revoke_all_returns_count(self, session_manager: SessionManager, db_session: AsyncMock):
        db_session.execute.return_value = make_result(rowcount=3)

        assert await session_manager.revoke_all(1, now=FIXED_NOW) == 3

    @pytest.mark.asyncio
    async def test_revoke_session_not_owned(self, session_manager: SessionManager, db_session: AsyncMock):
        db_session.execute.return_value = make_result(rowcount=0)

        with pytest.raises(NotFoundError):
            await session_manager.revoke_session(1, 77, now=FIXED_NOW)

        db_session.commit.assert_not_awaited()


class TestListAndLiveness:
    """Tests for listing and liveness checks."""

    @pytest.mark.asyncio
    async def test_list_active_hides_expired(self, session_manager: SessionManager, db_session: AsyncMock):
        live = create_session_row(1)
        lapsed = create_session_row(2, expires_at=FIXED_NOW - timedelta(hours=1))
        db_session.execute.return_value = make_result(scalars=[live, lapsed])

        assert await session_manager.list_active(1, now=FIXED_NOW) == [live]

    @pytest.mark.asyncio
    async def test_is_active_for_live_session(self, session_manager: SessionManager, db_session: AsyncMock):
        db_session.execute.return_value = make_result(one_or_none=(FIXED_NOW + timedelta(days=1),))

        assert await session_manager.is_active(1, now=FIXED_NOW) is True

    @pytest.mark.asyncio
    async def test_is_active_for_lapsed_session(
        self, session_manager: SessionManager, db_session: AsyncMock
    ):
        db_session.execute.return_value = make_result(one_or_none=(FIXED_NOW - timedelta(days=1),))

        assert await session_manager.is_active(1, now=FIXED_NOW) is False

    @pytest.mark.asyncio
    async def test_is_active_for_revoked_session(
        self, session_manager: SessionManager, db_session: AsyncMock
    ):
        db_session.execute.return_value = make_result(one_or_none=None)

        assert await session_manager.is_active(1, now=FIXED_NOW) is False

    @pytest.mark.asyncio
    async def test_deactivate_expired(self, session_manager: SessionManager, db_session: AsyncMock):
        db_session.execute.return_value = make_result(rowcount=4)

        assert await session_manager.deactivate_expired(now=FIXED_NOW) == 4
