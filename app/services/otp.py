"""
OTP Engine - Issue, rate-limit, verify and invalidate one-time codes.

NO DICTIONARIES - Policy and results are typed dataclasses.

Every state change for one identifier is serialised by a transaction-scoped
Postgres advisory lock (issue) or a row lock on the active record (verify),
so concurrent requests never leave two usable codes for the same pair.
"""

import hashlib
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings
from app.db.models import OtpVerification
from app.db.session import store_errors
from app.exceptions import (
    OtpAlreadyInvalidError,
    OtpAlreadyVerifiedError,
    OtpExpiredError,
    OtpMismatchError,
    OtpNotFoundError,
    OtpTooManyAttemptsError,
    RateLimitedError,
)
from app.models.api import OtpChannel, OtpInvalidationReason, OtpPurpose
from app.models.domain import IssuedOtp, OtpVerificationResult
from app.observability.metrics import metrics
from app.services.passwords import hash_otp_code, otp_code_matches

logger = get_logger(__name__)


@dataclass(frozen=True)
class OtpPolicy:
    """Lifetimes and ceilings applied by the engine."""

    code_length: int = 6
    ttl: timedelta = timedelta(minutes=10)
    max_attempts: int = 5
    rate_limit_max: int = 5
    rate_limit_window: timedelta = timedelta(hours=1)
    retention: timedelta = timedelta(hours=24)

    def __post_init__(self) -> None:
        if self.code_length < 4:
            raise ValueError("code_length must be at least 4")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.rate_limit_max < 1:
            raise ValueError("rate_limit_max must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "OtpPolicy":
        return cls(
            code_length=settings.otp_length,
            ttl=timedelta(minutes=settings.otp_ttl_minutes),
            max_attempts=settings.otp_max_attempts,
            rate_limit_max=settings.otp_rate_limit_max,
            rate_limit_window=timedelta(minutes=settings.otp_rate_limit_window_minutes),
            retention=timedelta(hours=settings.otp_retention_hours),
        )


def generate_numeric_code(length: int) -> str:
    """Uniformly random zero-padded numeric code."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def advisory_lock_key(identifier: str) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.blake2b(identifier.encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def ensure_verifiable(record: OtpVerification, now: datetime, max_attempts: int) -> None:
    """
    Raise the failure that applies to a record before its code is compared.

    Order matters: a used code reports AlreadyVerified, an exhausted one
    TooManyAttempts even after it has also expired.
    """
    if record.is_verified:
        raise OtpAlreadyVerifiedError()
    if (
        record.invalidated_reason == OtpInvalidationReason.MAX_ATTEMPTS.value
        or record.attempts >= max_attempts
    ):
        raise OtpTooManyAttemptsError()
    if record.invalidated_at is not None:
        raise OtpNotFoundError()
    if record.expires_at <= now:
        raise OtpExpiredError()


def register_mismatch(record: OtpVerification, now: datetime, max_attempts: int) -> int:
    """Count a wrong code against the record; returns attempts remaining."""
    record.attempts += 1
    remaining = max(max_attempts - record.attempts, 0)
    if remaining == 0:
        record.invalidated_at = now
        record.invalidated_reason = OtpInvalidationReason.MAX_ATTEMPTS.value
    return remaining


class OtpEngine:
    """Single writer of OtpVerification rows."""

    def __init__(
        self,
        db: AsyncSession,
        secret: str,
        policy: OtpPolicy | None = None,
        code_generator: Callable[[int], str] = generate_numeric_code,
    ) -> None:
        self.db = db
        self.secret = secret
        self.policy = policy or OtpPolicy()
        self.code_generator = code_generator

    async def issue(
        self,
        identifier: str,
        purpose: OtpPurpose,
        *,
        channel: OtpChannel = OtpChannel.SMS,
        country_code: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> IssuedOtp:
        """
        Issue a new code for (identifier, purpose).

        Runs as one transaction: rate-limit count, invalidation of every prior
        unverified code for the pair, insert of the new record.

        Raises:
            RateLimitedError: Too many codes issued for identifier in the window
            StoreUnavailableError: Store did not answer in time
        """
        now = now or datetime.now(UTC)
        window_start = now - self.policy.rate_limit_window

        async with store_errors(self.db, "otp_issue"):
            await self.db.execute(select(func.pg_advisory_xact_lock(advisory_lock_key(identifier))))

            stmt = select(func.count(OtpVerification.id), func.min(OtpVerification.created_at)).where(
                OtpVerification.identifier == identifier,
                OtpVerification.created_at > window_start,
            )
            result = await self.db.execute(stmt)
            recent_count, oldest_in_window = result.one()

            if recent_count >= self.policy.rate_limit_max:
                await self.db.rollback()
                retry_after = self.policy.rate_limit_window
                if oldest_in_window is not None:
                    retry_after = oldest_in_window + self.policy.rate_limit_window - now
                retry_after_seconds = max(int(retry_after.total_seconds()), 1)
                metrics.record_otp_rate_limited(purpose.value)
                logger.warning(
                    "otp_rate_limited",
                    identifier=identifier,
                    purpose=purpose.value,
                    recent_count=recent_count,
                    retry_after_seconds=retry_after_seconds,
                )
                raise RateLimitedError(retry_after_seconds)

            superseded = await self.db.execute(
                update(OtpVerification)
                .where(
                    OtpVerification.identifier == identifier,
                    OtpVerification.purpose == purpose.value,
                    OtpVerification.is_verified.is_(False),
                    OtpVerification.invalidated_at.is_(None),
                )
                .values(
                    invalidated_at=now,
                    invalidated_reason=OtpInvalidationReason.SUPERSEDED.value,
                )
            )

            code = self.code_generator(self.policy.code_length)
            record = OtpVerification(
                identifier=identifier,
                country_code=country_code,
                purpose=purpose.value,
                channel=channel.value,
                code_hash=hash_otp_code(self.secret, identifier, purpose.value, code),
                attempts=0,
                is_verified=False,
                expires_at=now + self.policy.ttl,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=now,
            )
            self.db.add(record)
            await self.db.flush()
            await self.db.commit()

        metrics.record_otp_issued(purpose.value)
        logger.info(
            "otp_issued",
            otp_id=record.id,
            identifier=identifier,
            purpose=purpose.value,
            channel=channel.value,
            superseded=superseded.rowcount,
            expires_at=record.expires_at.isoformat(),
        )

        return IssuedOtp(
            otp_id=record.id,
            identifier=identifier,
            purpose=purpose,
            channel=channel,
            code=code,
            expires_at=record.expires_at,
        )

    async def verify(
        self,
        identifier: str,
        purpose: OtpPurpose,
        code: str,
        *,
        commit: bool = True,
        now: datetime | None = None,
    ) -> OtpVerificationResult:
        """
        Verify a code against the latest record for (identifier, purpose).

        Failed attempts are always committed. With commit=False a successful
        verification is only flushed, so the caller's transaction decides
        whether the code is consumed.

        Raises:
            OtpNotFoundError: No usable record
            OtpAlreadyVerifiedError: Record was already consumed
            OtpTooManyAttemptsError: Attempt ceiling reached
            OtpExpiredError: Record past expiry
            OtpAlreadyInvalidError: Code belongs to a superseded record
            OtpMismatchError: Wrong code; attempt counted
            StoreUnavailableError: Store did not answer in time
        """
        now = now or datetime.now(UTC)
        max_attempts = self.policy.max_attempts

        async with store_errors(self.db, "otp_verify"):
            stmt = (
                select(OtpVerification)
                .where(
                    OtpVerification.identifier == identifier,
                    OtpVerification.purpose == purpose.value,
                )
                .order_by(OtpVerification.id.desc())
                .limit(1)
                .with_for_update()
            )
            result = await self.db.execute(stmt)
            record = result.scalar_one_or_none()

            if record is None:
                await self.db.rollback()
                metrics.record_otp_verification(purpose.value, "not_found")
                raise OtpNotFoundError()

            try:
                ensure_verifiable(record, now, max_attempts)
            except (OtpAlreadyVerifiedError, OtpTooManyAttemptsError, OtpNotFoundError, OtpExpiredError) as e:
                await self.db.rollback()
                metrics.record_otp_verification(purpose.value, e.code)
                logger.info(
                    "otp_verify_rejected",
                    otp_id=record.id,
                    identifier=identifier,
                    purpose=purpose.value,
                    reason=e.code,
                )
                raise

            if not otp_code_matches(self.secret, identifier, purpose.value, code, record.code_hash):
                remaining = register_mismatch(record, now, max_attempts)
                attempts = record.attempts
                otp_id = record.id
                await self.db.commit()

                stale = await self._matches_superseded(identifier, purpose, code)
                outcome = "already_invalid" if stale else "mismatch"
                metrics.record_otp_verification(purpose.value, outcome)
                logger.warning(
                    "otp_verify_mismatch",
                    otp_id=otp_id,
                    identifier=identifier,
                    purpose=purpose.value,
                    attempts=attempts,
                    attempts_remaining=remaining,
                    superseded_code=stale,
                )
                if stale:
                    raise OtpAlreadyInvalidError()
                raise OtpMismatchError(attempts=attempts, attempts_remaining=remaining)

            record.is_verified = True
            record.verified_at = now
            if commit:
                await self.db.commit()
            else:
                await self.db.flush()

        metrics.record_otp_verification(purpose.value, "verified")
        logger.info(
            "otp_verified",
            otp_id=record.id,
            identifier=identifier,
            purpose=purpose.value,
            attempts=record.attempts,
        )

        return OtpVerificationResult(
            otp_id=record.id,
            identifier=identifier,
            purpose=purpose,
            verified_at=now,
        )

    async def _matches_superseded(self, identifier: str, purpose: OtpPurpose, code: str) -> bool:
        stmt = select(OtpVerification.code_hash).where(
            OtpVerification.identifier == identifier,
            OtpVerification.purpose == purpose.value,
            OtpVerification.invalidated_reason == OtpInvalidationReason.SUPERSEDED.value,
        )
        result = await self.db.execute(stmt)
        return any(
            otp_code_matches(self.secret, identifier, purpose.value, code, code_hash)
            for code_hash in result.scalars().all()
        )

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete records that expired longer ago than the retention window."""
        now = now or datetime.now(UTC)
        cutoff = now - self.policy.retention

        async with store_errors(self.db, "otp_purge"):
            result = await self.db.execute(
                delete(OtpVerification).where(OtpVerification.expires_at < cutoff)
            )
            await self.db.commit()

        logger.info("otp_purged", deleted=result.rowcount, cutoff=cutoff.isoformat())
        return result.rowcount
