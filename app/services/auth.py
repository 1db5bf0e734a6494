"""
Auth Service - Signup, login, OTP, refresh and logout use cases.

NO DICTIONARIES - Inputs are validated dataclasses/requests, outputs are typed models.

Composes the OTP engine, password hashing, session manager and notifier.
Identity-proof failures are deliberately undifferentiated (InvalidCredentialsError).
"""

import secrets
import string
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings
from app.db.models import Role, User, UserSession
from app.db.session import store_errors
from app.exceptions import (
    AccountSuspendedError,
    ConflictError,
    DataIntegrityError,
    IdentityError,
    InvalidCredentialsError,
    NotFoundError,
    ValidationFailureError,
)
from app.models.api import (
    KycStatus,
    LoginMethod,
    OtpChannel,
    OtpPurpose,
    OtpSendRequest,
    OtpSentData,
    OtpVerifiedData,
    OtpVerifyRequest,
    SessionListData,
    SessionResponse,
    UserResponse,
    UserStatus,
)
from app.models.domain import (
    AuthOutcome,
    DeviceInfo,
    OtpCredentials,
    PasswordCredentials,
    SessionTokens,
    SignupProfile,
)
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.authorization import DEFAULT_ROLE_SLUG
from app.services.notifications import Notifier, dispatch
from app.services.otp import OtpEngine
from app.services.passwords import PasswordService
from app.services.sessions import SessionManager

logger = get_logger(__name__)

REFERRAL_ALPHABET = string.ascii_uppercase + string.digits
DISABLED_STATUSES = (UserStatus.BLOCKED.value, UserStatus.SUSPENDED.value)

# Unique constraint name -> field reported in ConflictError
CONFLICT_FIELDS = {
    "uq_users_country_mobile": "mobile",
    "uq_users_email": "email",
    "uq_users_referral_code": "referral_code",
}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def user_response(user: User) -> UserResponse:
    """Public projection of a user row."""
    return UserResponse(
        id=user.id,
        full_name=user.full_name,
        mobile=user.mobile,
        country_code=user.country_code,
        email=user.email,
        role=user.role_slug,
        status=UserStatus(user.status),
        is_phone_verified=user.is_phone_verified,
        is_email_verified=user.is_email_verified,
        kyc_status=KycStatus(user.kyc_status),
        referral_code=user.referral_code,
        last_login_at=_iso(user.last_login_at),
        created_at=_iso(user.created_at),
    )


def session_response(session: UserSession, current_session_id: int | None = None) -> SessionResponse:
    """Projection of a device session."""
    return SessionResponse(
        id=session.id,
        device_id=session.device_id,
        device_name=session.device_name,
        user_agent=session.user_agent,
        ip_address=session.ip_address,
        login_method=session.login_method,
        last_active=session.last_active.isoformat(),
        created_at=session.created_at.isoformat(),
        expires_at=_iso(session.expires_at),
        is_current=session.id == current_session_id,
    )


def conflict_field(error: IntegrityError) -> str:
    """Map a unique-violation to the offending field."""
    detail = str(error.orig)
    for constraint, field in CONFLICT_FIELDS.items():
        if constraint in detail:
            return field
    return "mobile"


def generate_referral_code(length: int) -> str:
    return "".join(secrets.choice(REFERRAL_ALPHABET) for _ in range(length))


class AuthService:
    """Auth use cases. One instance per request, bound to one database session."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        passwords: PasswordService,
        otp: OtpEngine,
        sessions: SessionManager,
        notifier: Notifier,
    ) -> None:
        self.db = db
        self.settings = settings
        self.passwords = passwords
        self.otp = otp
        self.sessions = sessions
        self.notifier = notifier

    # ========================================================================
    # Lookups
    # ========================================================================

    @property
    def otp_channel(self) -> OtpChannel:
        return OtpChannel(self.settings.otp_channel)

    def otp_identifier(self, mobile: str, email: str | None) -> str:
        """OTPs are keyed by email on the email channel, by mobile otherwise."""
        if self.otp_channel == OtpChannel.EMAIL:
            if not email:
                raise ValidationFailureError.for_field(
                    "email", "Valid email address is required"
                )
            return email
        return mobile

    def owns_identifier(self, user: User, identifier: str) -> bool:
        """An email-channel code proves the inbox, so it must be the account's email."""
        if self.otp_channel != OtpChannel.EMAIL:
            return True
        return user.email is not None and user.email.lower() == identifier.lower()

    async def _find_by_mobile(self, country_code: str, mobile: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.country_code == country_code, User.mobile == mobile)
        )
        return result.scalar_one_or_none()

    async def _find_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def _default_role(self) -> Role:
        result = await self.db.execute(
            select(Role).where(Role.slug == DEFAULT_ROLE_SLUG, Role.is_active.is_(True))
        )
        role = result.scalar_one_or_none()
        if role is None:
            logger.error("default_role_missing", slug=DEFAULT_ROLE_SLUG)
            raise DataIntegrityError("Default user role not found")
        return role

    async def _unique_referral_code(self) -> str:
        for _ in range(self.settings.referral_code_max_attempts):
            code = generate_referral_code(self.settings.referral_code_length)
            result = await self.db.execute(select(User.id).where(User.referral_code == code))
            if result.scalar_one_or_none() is None:
                return code
        logger.error(
            "referral_code_exhausted", attempts=self.settings.referral_code_max_attempts
        )
        raise DataIntegrityError("Could not generate a unique referral code")

    # ========================================================================
    # Signup / Login
    # ========================================================================

    async def signup(
        self, profile: SignupProfile, device: DeviceInfo, now: datetime | None = None
    ) -> AuthOutcome:
        """
        Register a user and open their first session.

        Raises:
            ConflictError: Mobile or email already registered
            ValidationFailureError: Unknown referral code
            OtpError: Supplied signup OTP failed verification
            DataIntegrityError: Default role missing
            StoreUnavailableError: Store did not answer in time
        """
        now = now or datetime.now(UTC)
        method = LoginMethod.PASSWORD if profile.password else LoginMethod.OTP

        try:
            async with store_errors(self.db, "signup"):
                if await self._find_by_mobile(profile.country_code, profile.mobile):
                    raise ConflictError("mobile", "Mobile number already registered")
                if profile.email and await self._find_by_email(profile.email):
                    raise ConflictError("email", "Email already registered")

                role = await self._default_role()

                referrer_id: int | None = None
                if profile.referral_code:
                    result = await self.db.execute(
                        select(User.id).where(User.referral_code == profile.referral_code.upper())
                    )
                    referrer_id = result.scalar_one_or_none()
                    if referrer_id is None:
                        raise ValidationFailureError.for_field(
                            "referral_code", "Invalid referral code"
                        )

                referral_code = await self._unique_referral_code()

                phone_verified = False
                if profile.otp:
                    await self.otp.verify(
                        self.otp_identifier(profile.mobile, profile.email),
                        OtpPurpose.SIGNUP,
                        profile.otp,
                        commit=False,
                        now=now,
                    )
                    phone_verified = True

                user = User(
                    full_name=profile.full_name,
                    country_code=profile.country_code,
                    mobile=profile.mobile,
                    email=profile.email,
                    password_hash=self.passwords.hash(profile.password) if profile.password else None,
                    role_id=role.id,
                    status=UserStatus.ACTIVE.value,
                    is_active=True,
                    is_phone_verified=phone_verified,
                    phone_verified_at=now if phone_verified else None,
                    is_email_verified=False,
                    kyc_status=KycStatus.PENDING.value,
                    max_devices=self.settings.default_max_devices,
                    referral_code=referral_code,
                    referred_by_id=referrer_id,
                    created_at=now,
                )
                user.role = role
                self.db.add(user)
                try:
                    await self.db.flush()
                except IntegrityError as e:
                    await self.db.rollback()
                    field = conflict_field(e)
                    logger.info("signup_conflict_on_insert", field=field)
                    raise ConflictError(field) from e

            tokens = await self.sessions.create_session(user.id, device, method, now=now)
        except IdentityError as e:
            metrics.record_auth_attempt("signup", method.value, e.code)
            raise

        metrics.record_auth_attempt("signup", method.value, "success")
        logger.info(
            "user_signed_up",
            user_id=user.id,
            method=method.value,
            referred_by=referrer_id,
            phone_verified=phone_verified,
        )
        dispatch(
            self.notifier.notify(
                user.id, "Welcome", f"Welcome {user.full_name}, your account is ready."
            ),
            "welcome_notification_failed",
        )
        return AuthOutcome(user=user_response(user), tokens=tokens, login_method=method)

    async def login(
        self,
        credentials: PasswordCredentials | OtpCredentials,
        device: DeviceInfo,
        now: datetime | None = None,
    ) -> AuthOutcome:
        """
        Prove identity by password or OTP and open a session.

        Raises:
            InvalidCredentialsError: Unknown user or failed proof
            AccountSuspendedError: Proof succeeded but the account is blocked/suspended
            OtpError: OTP-specific verification failure
            StoreUnavailableError: Store did not answer in time
        """
        now = now or datetime.now(UTC)
        method = (
            LoginMethod.PASSWORD if isinstance(credentials, PasswordCredentials) else LoginMethod.OTP
        )

        try:
            with trace_operation("auth_login", method=method.value) as span:
                async with store_errors(self.db, "login"):
                    if isinstance(credentials, PasswordCredentials):
                        user = await self._prove_password(credentials)
                    else:
                        user = await self._prove_otp(credentials, now)
                    span.set_attribute("user_id", user.id)

                    if user.status in DISABLED_STATUSES:
                        await self.db.rollback()
                        logger.warning("login_account_suspended", user_id=user.id, status=user.status)
                        raise AccountSuspendedError(user.id, user.status)
                    if not user.can_authenticate:
                        await self.db.rollback()
                        logger.warning("login_account_inactive", user_id=user.id, status=user.status)
                        raise InvalidCredentialsError()

                    user.last_login_at = now

                tokens = await self.sessions.create_session(user.id, device, method, now=now)
                span.set_attribute("session_id", tokens.session_id)
        except IdentityError as e:
            metrics.record_auth_attempt("login", method.value, e.code)
            raise

        metrics.record_auth_attempt("login", method.value, "success")
        logger.info("user_logged_in", user_id=user.id, method=method.value, session_id=tokens.session_id)
        return AuthOutcome(user=user_response(user), tokens=tokens, login_method=method)

    async def _prove_password(self, credentials: PasswordCredentials) -> User:
        if credentials.mobile:
            user = await self._find_by_mobile(credentials.country_code, credentials.mobile)
        else:
            user = await self._find_by_email(credentials.email or "")

        if user is None or user.password_hash is None:
            self.passwords.burn_verify(credentials.password)
            logger.info("login_failed", reason="unknown_user_or_no_password")
            raise InvalidCredentialsError()

        if not self.passwords.verify(user.password_hash, credentials.password):
            logger.info("login_failed", reason="password_mismatch", user_id=user.id)
            raise InvalidCredentialsError()

        if self.passwords.needs_rehash(user.password_hash):
            user.password_hash = self.passwords.hash(credentials.password)
            logger.info("password_rehashed", user_id=user.id)

        return user

    async def _prove_otp(self, credentials: OtpCredentials, now: datetime) -> User:
        identifier = self.otp_identifier(credentials.mobile, credentials.email)
        await self.otp.verify(
            identifier,
            OtpPurpose.LOGIN,
            credentials.code,
            commit=False,
            now=now,
        )
        user = await self._find_by_mobile(credentials.country_code, credentials.mobile)
        if user is None:
            await self.db.rollback()
            logger.info("login_failed", reason="otp_without_user")
            raise InvalidCredentialsError()
        if not self.owns_identifier(user, identifier):
            await self.db.rollback()
            logger.warning("login_failed", reason="otp_for_foreign_contact", user_id=user.id)
            raise InvalidCredentialsError()
        return user

    # ========================================================================
    # OTP
    # ========================================================================

    async def send_otp(
        self, request: OtpSendRequest, device: DeviceInfo, now: datetime | None = None
    ) -> OtpSentData:
        """
        Issue an OTP and hand it to the notifier.

        Raises:
            ConflictError: Signup OTP for a registered mobile
            NotFoundError: Login OTP for an unregistered mobile
            InvalidCredentialsError: Login OTP to an email the account does not hold
            RateLimitedError: Too many OTPs for the identifier
            StoreUnavailableError: Store did not answer in time
        """
        identifier = self.otp_identifier(request.mobile, request.email)

        async with store_errors(self.db, "otp_send"):
            existing = await self._find_by_mobile(request.country_code, request.mobile)

        if request.purpose == OtpPurpose.SIGNUP and existing is not None:
            raise ConflictError("mobile", "Mobile number already registered. Please use login instead")
        if request.purpose == OtpPurpose.LOGIN:
            if existing is None:
                raise NotFoundError("user", "Mobile number not registered. Please sign up first")
            if not self.owns_identifier(existing, identifier):
                logger.warning("otp_send_rejected", reason="foreign_contact", user_id=existing.id)
                raise InvalidCredentialsError()

        issued = await self.otp.issue(
            identifier,
            request.purpose,
            channel=self.otp_channel,
            country_code=request.country_code,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
            now=now,
        )
        if self.settings.is_development:
            logger.debug("otp_code_generated", identifier=identifier, otp=issued.code)

        dispatch(
            self.notifier.send_otp(identifier, issued.code, request.purpose, issued.channel),
            "otp_delivery_failed",
        )

        return OtpSentData(
            purpose=request.purpose,
            channel=issued.channel,
            mobile=request.mobile,
            country_code=request.country_code,
            email=request.email,
            expires_in=int(self.otp.policy.ttl.total_seconds()),
        )

    async def verify_otp(self, request: OtpVerifyRequest, now: datetime | None = None) -> OtpVerifiedData:
        """
        Standalone verification. Purpose verification marks the contact verified.

        Raises:
            OtpError: Verification failed
            InvalidCredentialsError: Verified email is not the account's email
            StoreUnavailableError: Store did not answer in time
        """
        now = now or datetime.now(UTC)
        identifier = self.otp_identifier(request.mobile, request.email)

        await self.otp.verify(identifier, request.purpose, request.otp, commit=False, now=now)

        async with store_errors(self.db, "otp_verify_contact"):
            if request.purpose == OtpPurpose.VERIFICATION:
                user = await self._find_by_mobile(request.country_code, request.mobile)
                if user is not None and not self.owns_identifier(user, identifier):
                    await self.db.rollback()
                    logger.warning("contact_verify_rejected", reason="foreign_contact", user_id=user.id)
                    raise InvalidCredentialsError()
                if user is not None:
                    if self.otp_channel == OtpChannel.EMAIL:
                        user.is_email_verified = True
                        user.email_verified_at = now
                    else:
                        user.is_phone_verified = True
                        user.phone_verified_at = now
                    logger.info("contact_verified", user_id=user.id, channel=self.otp_channel.value)
            await self.db.commit()

        return OtpVerifiedData(purpose=request.purpose, mobile=request.mobile)

    # ========================================================================
    # Sessions / Profile
    # ========================================================================

    async def refresh_token(self, refresh_token: str) -> SessionTokens:
        return await self.sessions.refresh(refresh_token)

    async def logout(self, refresh_token: str) -> bool:
        return await self.sessions.revoke(refresh_token)

    async def logout_all(self, user_id: int) -> int:
        return await self.sessions.revoke_all(user_id)

    async def list_sessions(self, user_id: int, current_session_id: int | None = None) -> SessionListData:
        """Active devices of a user, flagging the caller's own session."""
        sessions = await self.sessions.list_active(user_id)
        user = await self._load_active_user(user_id)
        return SessionListData(
            sessions=[session_response(s, current_session_id) for s in sessions],
            max_devices=user.max_devices,
        )

    async def revoke_session(self, user_id: int, session_id: int) -> None:
        await self.sessions.revoke_session(user_id, session_id)

    async def get_profile(self, user_id: int) -> UserResponse:
        """
        Raises:
            NotFoundError: User missing, deactivated or deleted
        """
        return user_response(await self._load_active_user(user_id))

    async def _load_active_user(self, user_id: int) -> User:
        async with store_errors(self.db, "profile"):
            result = await self.db.execute(select(User).where(User.id == user_id))
            user = result.scalar_one_or_none()
        if user is None or not user.is_active or user.status == UserStatus.DELETED.value:
            raise NotFoundError("user", "User not found")
        return user
