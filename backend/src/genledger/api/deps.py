"""FastAPI dependencies for database sessions, authentication and collaborators."""
from typing import Optional

import httpx
import jwt
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.adapters.provider import ReplicateProvider
from genledger.adapters.storage import S3Storage
from genledger.cache import SettingsCache
from genledger.config import settings
from genledger.database import get_db
from genledger.schemas.platform import PlatformSettings
from genledger.services.completion import CompletionService

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    """
    Decode the caller's bearer token.

    Tokens are signed with the shared ``jwt_secret_key``; ``sub`` is the
    owner id every job and balance is scoped to, and ``role: admin`` unlocks
    the platform settings endpoints. ``exp`` is enforced when present.
    """
    if credentials is None:
        raise _unauthorized("Authentication required")

    try:
        claims = jwt.decode(
            credentials.credentials,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        logger.info("auth_token_expired")
        raise _unauthorized("Token has expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning("auth_token_rejected", error=str(e))
        raise _unauthorized("Invalid authentication token") from e
    return claims


async def get_owner_id(current_user: dict = Depends(get_current_user)) -> str:
    """Owner id of the authenticated caller."""
    return str(current_user["sub"])


async def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    """Reject callers without the admin role."""
    if current_user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return current_user


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_storage(request: Request) -> S3Storage:
    return request.app.state.storage


def get_settings_cache(request: Request) -> SettingsCache[PlatformSettings]:
    return request.app.state.settings_cache


def get_provider(http_client: httpx.AsyncClient = Depends(get_http_client)) -> ReplicateProvider:
    return ReplicateProvider(client=http_client)


def get_completion_service(
    db: AsyncSession = Depends(get_db),
    provider: ReplicateProvider = Depends(get_provider),
    storage: S3Storage = Depends(get_storage),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> CompletionService:
    return CompletionService(db, provider, storage, http_client)
