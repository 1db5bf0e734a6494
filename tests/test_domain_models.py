"""
Tests for domain models and request validation.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from app.models.api import (
    ApiResponse,
    OtpChannel,
    OtpPurpose,
    OtpSendRequest,
    PasswordLoginRequest,
    SignupRequest,
)
from app.models.domain import (
    AccessClaims,
    IssuedOtp,
    PasswordCredentials,
    SessionTokens,
    SignupProfile,
)
from tests.conftest import FIXED_NOW


class TestDomainModels:
    """Tests for domain dataclasses."""

    def test_access_claims_reject_bad_user(self):
        with pytest.raises(ValueError, match="user_id"):
            AccessClaims(
                user_id=0,
                role_slug="user",
                session_id=1,
                issued_at=FIXED_NOW,
                expires_at=FIXED_NOW,
            )

    def test_access_claims_reject_empty_role(self):
        with pytest.raises(ValueError, match="role_slug"):
            AccessClaims(
                user_id=1,
                role_slug="",
                session_id=1,
                issued_at=FIXED_NOW,
                expires_at=FIXED_NOW,
            )

    def test_signup_profile_needs_proof(self):
        with pytest.raises(ValueError, match="password or otp"):
            SignupProfile(
                full_name="Asha Rao",
                mobile="9000000001",
                country_code="+91",
                email=None,
                password=None,
                otp=None,
                referral_code=None,
            )

    def test_password_credentials_need_identifier(self):
        with pytest.raises(ValueError, match="mobile or email"):
            PasswordCredentials(password="x")

    def test_issued_otp_repr_hides_code(self):
        issued = IssuedOtp(
            otp_id=1,
            identifier="9000000001",
            purpose=OtpPurpose.LOGIN,
            channel=OtpChannel.SMS,
            code="483920",
            expires_at=FIXED_NOW,
        )
        assert "483920" not in repr(issued)

    def test_session_tokens_repr_hides_tokens(self):
        tokens = SessionTokens(
            session_id=3,
            access_token="access-secret",
            refresh_token="refresh-secret",
            access_expires_in=900,
            session_expires_at=FIXED_NOW + timedelta(days=7),
        )
        assert "secret" not in repr(tokens)


class TestRequestModels:
    """Tests for request validation."""

    def test_signup_trims_name(self):
        request = SignupRequest(full_name="  Asha Rao ", mobile="9000000001", password="s3cret-pass")
        assert request.full_name == "Asha Rao"
        assert request.country_code == "+91"

    def test_signup_short_name(self):
        with pytest.raises(ValidationError):
            SignupRequest(full_name=" A ", mobile="9000000001", password="s3cret-pass")

    def test_signup_short_password(self):
        with pytest.raises(ValidationError):
            SignupRequest(full_name="Asha Rao", mobile="9000000001", password="12345")

    def test_signup_normalises_email(self):
        request = SignupRequest(
            full_name="Asha Rao", mobile="9000000001", password="s3cret-pass", email=" Asha@Example.COM "
        )
        assert request.email == "asha@example.com"

    def test_signup_invalid_email(self):
        with pytest.raises(ValidationError):
            SignupRequest(full_name="Asha Rao", mobile="9000000001", password="s3cret-pass", email="nope")

    @pytest.mark.parametrize("email", ["asha@", "asha@@example.com", "asha rao@example.com"])
    def test_malformed_emails_rejected(self, email: str):
        with pytest.raises(ValidationError):
            OtpSendRequest(mobile="9000000001", email=email, purpose=OtpPurpose.LOGIN)

    def test_overlong_email_rejected(self):
        with pytest.raises(ValidationError):
            PasswordLoginRequest(email=f"{'a' * 140}@example.com", password="x")

    def test_login_email_normalised(self):
        request = PasswordLoginRequest(email="Asha@Example.com", password="x")
        assert request.email == "asha@example.com"
        assert request.mobile is None

    @pytest.mark.parametrize("mobile", ["900000000", "90000000012", "90000a0001", "+919000000001"])
    def test_mobile_must_be_ten_digits(self, mobile: str):
        with pytest.raises(ValidationError):
            OtpSendRequest(mobile=mobile, purpose=OtpPurpose.SIGNUP)

    def test_login_requires_mobile_or_email(self):
        with pytest.raises(ValidationError):
            PasswordLoginRequest(password="x")

    def test_envelope_defaults(self):
        response = ApiResponse[None](message="Logout successful")
        assert response.success is True
        assert response.data is None
        assert response.timestamp
