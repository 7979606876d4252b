"""Shared FastAPI dependencies."""

from typing import Annotated, NoReturn

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from kindlesync.auth.github import GitHubClient
from kindlesync.config import Settings, get_settings
from kindlesync.core.auth_flow import AuthOrchestrator
from kindlesync.core.exceptions import AuthFlowError
from kindlesync.database import get_db

bearer_scheme = HTTPBearer(auto_error=False)


def get_github_client(settings: Annotated[Settings, Depends(get_settings)]) -> GitHubClient:
    return GitHubClient(settings)


def get_orchestrator(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
    provider: Annotated[GitHubClient, Depends(get_github_client)],
) -> AuthOrchestrator:
    """Per-request orchestrator bound to the request's database session."""
    return AuthOrchestrator(db, settings=settings, provider=provider)


def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> str:
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header is required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def raise_http_error(error: AuthFlowError) -> NoReturn:
    """Translate a flow error into the matching HTTP response."""
    headers = None
    if error.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    raise HTTPException(
        status_code=error.status_code,
        detail=error.message,
        headers=headers,
    ) from error
