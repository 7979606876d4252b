"""Device-facing authentication API.

- Start a sign-in session (returns the GitHub URL to open elsewhere)
- Poll the session until a token is available
- Rotate a token
- Log out everywhere
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from kindlesync.api.dependencies import get_bearer_token, get_orchestrator, raise_http_error
from kindlesync.config import get_settings
from kindlesync.core.auth_flow import AuthOrchestrator
from kindlesync.core.exceptions import AuthFlowError
from kindlesync.core.slowapi_limiter import limiter

settings = get_settings()
router = APIRouter(prefix="/auth", tags=["auth"])


# ============================================================================
# Request/Response Models
# ============================================================================


class AuthRequest(BaseModel):
    """Sign-in request from a device."""

    device_id: str | None = None


class AuthRequestResponse(BaseModel):
    """Session handle plus the URL the user opens on another device."""

    session_token: str
    auth_url: str
    expires_at: datetime


class UserInfo(BaseModel):
    id: str
    username: str
    avatar_url: str | None = None


class AuthStatusResponse(BaseModel):
    """Session status; token fields only once authorized."""

    status: str
    user_token: str | None = None
    user_info: UserInfo | None = None


class TokenResponse(BaseModel):
    user_token: str
    user_info: UserInfo


# ============================================================================
# API Endpoints
# ============================================================================


@router.post("/request", response_model=AuthRequestResponse)
@limiter.limit(settings.rate_limit_auth_request)
async def request_auth(
    request: Request,
    data: AuthRequest,
    orchestrator: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    """Start a sign-in session for a device."""
    try:
        result = await orchestrator.initiate(data.device_id)
    except AuthFlowError as e:
        raise_http_error(e)

    return AuthRequestResponse(
        session_token=result.session_token,
        auth_url=result.authorize_url,
        expires_at=result.expires_at,
    )


@router.get("/status", response_model=AuthStatusResponse, response_model_exclude_none=True)
@limiter.limit(settings.rate_limit_auth_status)
async def auth_status(
    request: Request,
    orchestrator: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
    session_token: str | None = None,
):
    """Poll a sign-in session.

    Returns 404 for unknown sessions and 410 once the session has expired,
    after which the device must start over.
    """
    try:
        result = await orchestrator.poll(session_token)
    except AuthFlowError as e:
        raise_http_error(e)

    if result.user is None:
        return AuthStatusResponse(status=result.status.value)

    return AuthStatusResponse(
        status=result.status.value,
        user_token=result.user_token,
        user_info=UserInfo(**result.user.summary()),
    )


@router.post("/refresh", response_model=TokenResponse)
@limiter.limit(settings.rate_limit_token)
async def refresh_token(
    request: Request,
    token: Annotated[str, Depends(get_bearer_token)],
    orchestrator: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    """Exchange the presented token for a new one; the old one stops working."""
    try:
        result = await orchestrator.refresh(token)
    except AuthFlowError as e:
        raise_http_error(e)

    return TokenResponse(
        user_token=result.user_token,
        user_info=UserInfo(**result.user.summary()),
    )


@router.post("/logout")
@limiter.limit(settings.rate_limit_token)
async def logout(
    request: Request,
    token: Annotated[str, Depends(get_bearer_token)],
    orchestrator: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    """Revoke every token of the caller, on all devices."""
    try:
        await orchestrator.logout(token)
    except AuthFlowError as e:
        raise_http_error(e)

    return Response(status_code=200)
