"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Cookie, Depends, Header

from social_backend.config import get_settings
from social_backend.db import DbClient, InMemoryDbClient, PostgresDbClient
from social_backend.errors import UnauthorizedError
from social_backend.follows import FollowService
from social_backend.identity import (
    ClerkIdentityProvider,
    IdentityProvider,
    InMemoryIdentityProvider,
    extract_session_token,
)
from social_backend.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from social_backend.users import UserService

_db_client: DbClient | None = None
_identity_provider: IdentityProvider | None = None
_storage_client: StorageClient | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(
            settings.database_url,
            timeout_seconds=settings.database_timeout_seconds,
        )
    return _db_client


def get_identity_provider() -> IdentityProvider:
    global _identity_provider
    if _identity_provider:
        return _identity_provider

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.clerk_secret_key:
        _identity_provider = InMemoryIdentityProvider()
    else:
        _identity_provider = ClerkIdentityProvider(
            secret_key=settings.clerk_secret_key,
            api_url=settings.clerk_api_url,
            timeout=settings.identity_timeout_seconds,
        )
    return _identity_provider


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.storage_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.storage_bucket,
            region=settings.storage_region or "",
            endpoint=settings.storage_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.storage_public_base_url,
        )
    return _storage_client


def get_user_service(
    db: DbClient = Depends(get_db_client),
    identity: IdentityProvider = Depends(get_identity_provider),
    storage: StorageClient = Depends(get_storage_client),
) -> UserService:
    return UserService(
        db,
        identity,
        storage,
        upload_url_expires_seconds=get_settings().upload_url_expires_seconds,
    )


def get_follow_service(db: DbClient = Depends(get_db_client)) -> FollowService:
    return FollowService(db)


def require_auth(
    authorization: Optional[str] = Header(default=None),
    session_cookie: Optional[str] = Cookie(default=None, alias="__session"),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> str:
    """
    Reject the request unless it carries a verified session; returns the
    caller's external identity id.
    """
    token = extract_session_token(authorization, session_cookie)
    state = identity.authenticate(token)
    if not state.is_authenticated or not state.external_id:
        raise UnauthorizedError()
    return state.external_id
