"""
Auth API routes - Signup, login, OTP, token refresh, logout and device sessions.

Every response uses the ApiResponse envelope. Failures are raised as service
exceptions and rendered by app.api.errors.
"""

from dataclasses import replace

from fastapi import APIRouter, Depends, status

from app.api.auth_dependencies import get_auth_service, get_current_identity, get_device_info
from app.models.api import (
    ApiResponse,
    AuthData,
    DevicePayload,
    OtpLoginRequest,
    OtpSendRequest,
    OtpSentData,
    OtpVerifiedData,
    OtpVerifyRequest,
    PasswordLoginRequest,
    RefreshData,
    RefreshTokenRequest,
    RevokedSessionsData,
    SessionListData,
    SignupRequest,
    TokenResponse,
    UserResponse,
)
from app.models.domain import (
    AccessClaims,
    AuthOutcome,
    DeviceInfo,
    OtpCredentials,
    PasswordCredentials,
    SessionTokens,
    SignupProfile,
)
from app.services.auth import AuthService

router = APIRouter(prefix="/api/auth", tags=["auth"])


def token_response(tokens: SessionTokens) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.access_expires_in,
        session_id=tokens.session_id,
    )


def auth_data(outcome: AuthOutcome) -> AuthData:
    return AuthData(user=outcome.user, tokens=token_response(outcome.tokens))


def with_payload(device: DeviceInfo, payload: DevicePayload) -> DeviceInfo:
    """Merge client-declared device fields into request-derived device info."""
    return replace(
        device,
        device_id=payload.device_id,
        device_name=payload.device_name,
        push_token=payload.push_token,
    )


@router.post(
    "/signup",
    response_model=ApiResponse[AuthData],
    status_code=status.HTTP_201_CREATED,
)
async def signup(
    request: SignupRequest,
    device: DeviceInfo = Depends(get_device_info),
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[AuthData]:
    """Register with a password and/or a signup OTP; returns the first session's tokens."""
    profile = SignupProfile(
        full_name=request.full_name,
        mobile=request.mobile,
        country_code=request.country_code,
        email=request.email,
        password=request.password,
        otp=request.otp,
        referral_code=request.referral_code,
    )
    outcome = await auth.signup(profile, with_payload(device, request.device))
    return ApiResponse(message="Registration successful", data=auth_data(outcome))


@router.post("/login", response_model=ApiResponse[AuthData])
async def login(
    request: PasswordLoginRequest,
    device: DeviceInfo = Depends(get_device_info),
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[AuthData]:
    """Password login by mobile or email."""
    credentials = PasswordCredentials(
        password=request.password,
        mobile=request.mobile,
        country_code=request.country_code,
        email=request.email,
    )
    outcome = await auth.login(credentials, with_payload(device, request.device))
    return ApiResponse(message="Login successful", data=auth_data(outcome))


@router.post("/otp/send", response_model=ApiResponse[OtpSentData])
async def send_otp(
    request: OtpSendRequest,
    device: DeviceInfo = Depends(get_device_info),
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[OtpSentData]:
    """Issue an OTP for signup, login or contact verification."""
    data = await auth.send_otp(request, device)
    return ApiResponse(message="OTP sent successfully", data=data)


@router.post("/otp/verify", response_model=ApiResponse[OtpVerifiedData])
async def verify_otp(
    request: OtpVerifyRequest,
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[OtpVerifiedData]:
    """Verify an OTP without logging in."""
    data = await auth.verify_otp(request)
    return ApiResponse(message="OTP verified successfully", data=data)


@router.post("/otp/login", response_model=ApiResponse[AuthData])
async def otp_login(
    request: OtpLoginRequest,
    device: DeviceInfo = Depends(get_device_info),
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[AuthData]:
    """Login with a login-purpose OTP."""
    credentials = OtpCredentials(
        mobile=request.mobile,
        code=request.otp,
        country_code=request.country_code,
        email=request.email,
    )
    outcome = await auth.login(credentials, with_payload(device, request.device))
    return ApiResponse(message="Login successful", data=auth_data(outcome))


@router.post("/refresh-token", response_model=ApiResponse[RefreshData])
async def refresh_token(
    request: RefreshTokenRequest,
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[RefreshData]:
    """Rotate the refresh token and mint a new access token."""
    tokens = await auth.refresh_token(request.refresh_token)
    return ApiResponse(message="Token refreshed successfully", data=RefreshData(tokens=token_response(tokens)))


@router.post("/logout", response_model=ApiResponse[None])
async def logout(
    request: RefreshTokenRequest,
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[None]:
    """End the session holding the refresh token. Unknown tokens also succeed."""
    await auth.logout(request.refresh_token)
    return ApiResponse(message="Logout successful")


@router.post("/logout-all", response_model=ApiResponse[RevokedSessionsData])
async def logout_all(
    identity: AccessClaims = Depends(get_current_identity),
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[RevokedSessionsData]:
    """End every session of the caller."""
    revoked = await auth.logout_all(identity.user_id)
    return ApiResponse(message="Logged out from all devices", data=RevokedSessionsData(revoked=revoked))


@router.get("/profile", response_model=ApiResponse[UserResponse])
async def profile(
    identity: AccessClaims = Depends(get_current_identity),
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[UserResponse]:
    data = await auth.get_profile(identity.user_id)
    return ApiResponse(message="Data retrieved successfully", data=data)


@router.get("/sessions", response_model=ApiResponse[SessionListData])
async def list_sessions(
    identity: AccessClaims = Depends(get_current_identity),
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[SessionListData]:
    """Active devices of the caller."""
    data = await auth.list_sessions(identity.user_id, current_session_id=identity.session_id)
    return ApiResponse(message="Data retrieved successfully", data=data)


@router.delete("/sessions/{session_id}", response_model=ApiResponse[None])
async def revoke_session(
    session_id: int,
    identity: AccessClaims = Depends(get_current_identity),
    auth: AuthService = Depends(get_auth_service),
) -> ApiResponse[None]:
    """Sign out one of the caller's devices."""
    await auth.revoke_session(identity.user_id, session_id)
    return ApiResponse(message="Session revoked")
