"""
Hypothesis Property-Based Tests for session caps and OTP attempt ceilings.

Exercises the pure planning and counting helpers; no database mocking.
"""

from datetime import timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from app.exceptions import OtpTooManyAttemptsError
from app.models.api import SessionRevokeReason
from app.services.otp import ensure_verifiable, register_mismatch
from app.services.passwords import hash_otp_code, otp_code_matches
from app.services.sessions import plan_evictions
from tests.conftest import FIXED_NOW, TEST_SECRET, create_otp_record, create_session_row

# ============================================================================
# Hypothesis Strategies
# ============================================================================

max_devices_values = st.integers(min_value=1, max_value=6)
minutes_ago = st.integers(min_value=0, max_value=60 * 24 * 7)
attempt_ceilings = st.integers(min_value=1, max_value=10)
numeric_codes = st.text(alphabet="0123456789", min_size=6, max_size=6)


@st.composite
def session_sets(draw):
    """Active sessions with distinct ids, random recency and some expired."""
    ids = draw(st.lists(st.integers(min_value=1, max_value=10_000), unique=True, max_size=12))
    sessions = []
    for session_id in ids:
        expired = draw(st.booleans())
        sessions.append(
            create_session_row(
                session_id,
                last_active=FIXED_NOW - timedelta(minutes=draw(minutes_ago)),
                expires_at=FIXED_NOW - timedelta(minutes=1) if expired else FIXED_NOW + timedelta(days=1),
            )
        )
    return sessions


# ============================================================================
# Session cap properties
# ============================================================================


class TestEvictionProperties:
    """Invariants of plan_evictions."""

    @given(sessions=session_sets(), max_devices=max_devices_values)
    @settings(max_examples=200)
    def test_room_for_new_session(self, sessions, max_devices):
        """After evicting, the new session fits under the cap."""
        evicted = {e.session_id for e in plan_evictions(sessions, max_devices, FIXED_NOW)}
        remaining = [s for s in sessions if s.id not in evicted]
        assert len(remaining) + 1 <= max_devices

    @given(sessions=session_sets(), max_devices=max_devices_values)
    @settings(max_examples=200)
    def test_all_expired_sessions_evicted(self, sessions, max_devices):
        evictions = plan_evictions(sessions, max_devices, FIXED_NOW)
        expired_ids = {s.id for s in sessions if s.is_expired(FIXED_NOW)}
        assert expired_ids == {e.session_id for e in evictions if e.reason == SessionRevokeReason.EXPIRED}

    @given(sessions=session_sets(), max_devices=max_devices_values)
    @settings(max_examples=200)
    def test_survivors_are_most_recent(self, sessions, max_devices):
        """No evicted live session is more recent than a surviving one."""
        evictions = plan_evictions(sessions, max_devices, FIXED_NOW)
        capped = {e.session_id for e in evictions if e.reason == SessionRevokeReason.DEVICE_LIMIT}
        live = [s for s in sessions if not s.is_expired(FIXED_NOW)]
        evicted_keys = [(s.last_active, s.id) for s in live if s.id in capped]
        kept_keys = [(s.last_active, s.id) for s in live if s.id not in capped]
        if evicted_keys and kept_keys:
            assert max(evicted_keys) < min(kept_keys)

    @given(
        max_devices=max_devices_values,
        logins=st.integers(min_value=1, max_value=15),
    )
    @settings(max_examples=100)
    def test_repeated_logins_never_exceed_cap(self, max_devices, logins):
        """Applying each plan before inserting keeps the active count bounded."""
        active = []
        for n in range(logins):
            evicted = {e.session_id for e in plan_evictions(active, max_devices, FIXED_NOW)}
            active = [s for s in active if s.id not in evicted]
            active.append(create_session_row(n + 1, last_active=FIXED_NOW + timedelta(seconds=n)))
            assert len(active) <= max_devices


# ============================================================================
# OTP properties
# ============================================================================


class TestOtpAttemptProperties:
    """Invariants of attempt counting."""

    @given(max_attempts=attempt_ceilings)
    @settings(max_examples=50)
    def test_ceiling_blocks_further_verification(self, max_attempts):
        record = create_otp_record()
        for _ in range(max_attempts):
            ensure_verifiable(record, FIXED_NOW, max_attempts)
            register_mismatch(record, FIXED_NOW, max_attempts)

        assert record.attempts == max_attempts
        with pytest.raises(OtpTooManyAttemptsError):
            ensure_verifiable(record, FIXED_NOW, max_attempts)

    @given(max_attempts=attempt_ceilings, mismatches=st.integers(min_value=0, max_value=10))
    @settings(max_examples=100)
    def test_remaining_never_negative(self, max_attempts, mismatches):
        record = create_otp_record()
        for _ in range(mismatches):
            remaining = register_mismatch(record, FIXED_NOW, max_attempts)
            assert 0 <= remaining < max_attempts

    @given(code=numeric_codes, other=numeric_codes)
    @settings(max_examples=100)
    def test_only_the_issued_code_matches(self, code, other):
        digest = hash_otp_code(TEST_SECRET, "9000000001", "login", code)
        assert otp_code_matches(TEST_SECRET, "9000000001", "login", code, digest)
        assert otp_code_matches(TEST_SECRET, "9000000001", "login", other, digest) == (code == other)
