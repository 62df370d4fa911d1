"""
HTTP routes for the social backend API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from social_backend.dependencies import (
    get_follow_service,
    get_user_service,
    require_auth,
)
from social_backend.follows import FollowService
from social_backend.schemas import (
    ImageUploadRequest,
    ImageUploadResponse,
    MessageResponse,
    NotificationsResponse,
    SyncUserResponse,
    UpdateProfileRequest,
    UserResponse,
)
from social_backend.users import UserService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/users/profile/{username}", response_model=UserResponse)
def get_user_profile(
    username: str, users: UserService = Depends(get_user_service)
):
    user = users.get_user_profile(username)
    return UserResponse(user=user.as_dict())


@router.post("/users/sync", response_model=SyncUserResponse)
def sync_user(
    external_id: str = Depends(require_auth),
    users: UserService = Depends(get_user_service),
):
    """
    Create the local user for the caller on first contact; 201 when created,
    200 when it already existed.
    """
    user, created = users.sync_user(external_id)
    if created:
        payload = SyncUserResponse(user=user.as_dict(), message="User created successfully")
        return JSONResponse(status_code=201, content=payload.model_dump())
    return SyncUserResponse(user=user.as_dict(), message="User already exists")


@router.get("/users/me", response_model=UserResponse)
def get_current_user(
    external_id: str = Depends(require_auth),
    users: UserService = Depends(get_user_service),
):
    user = users.get_current_user(external_id)
    return UserResponse(user=user.as_dict())


@router.put("/users/profile", response_model=UserResponse)
def update_profile(
    payload: UpdateProfileRequest,
    external_id: str = Depends(require_auth),
    users: UserService = Depends(get_user_service),
):
    user = users.update_profile(external_id, payload.model_dump(exclude_unset=True))
    return UserResponse(user=user.as_dict())


@router.post("/users/profile/image-upload", response_model=ImageUploadResponse)
def create_image_upload(
    payload: ImageUploadRequest,
    external_id: str = Depends(require_auth),
    users: UserService = Depends(get_user_service),
):
    upload = users.create_image_upload(external_id, payload.kind, payload.content_type)
    return ImageUploadResponse(
        upload_url=upload.upload_url, path=upload.path, public_url=upload.public_url
    )


@router.post("/users/follow/{target_user_id}", response_model=MessageResponse)
def follow_user(
    target_user_id: str,
    external_id: str = Depends(require_auth),
    follows: FollowService = Depends(get_follow_service),
):
    result = follows.toggle_follow(external_id, target_user_id)
    return MessageResponse(message=result.message)


@router.get("/notifications", response_model=NotificationsResponse)
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    external_id: str = Depends(require_auth),
    users: UserService = Depends(get_user_service),
):
    notifications = users.list_notifications(external_id, limit=limit)
    return NotificationsResponse(
        notifications=[n.as_dict() for n in notifications]
    )
