"""
Pydantic schemas for the social backend API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserPayload(BaseModel):
    id: str
    external_id: str
    email: str
    username: str
    first_name: str
    last_name: str
    profile_picture: str
    banner_image: str
    bio: str
    location: str
    following: list[str]
    followers: list[str]
    created_at: float
    updated_at: float


class UserResponse(BaseModel):
    user: UserPayload


class SyncUserResponse(BaseModel):
    user: UserPayload
    message: str


class MessageResponse(BaseModel):
    message: str


class UpdateProfileRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    username: Optional[str] = Field(
        default=None, min_length=1, max_length=30, pattern=r"^[A-Za-z0-9._-]+$"
    )
    bio: Optional[str] = Field(default=None, max_length=160)
    location: Optional[str] = Field(default=None, max_length=100)
    profile_picture: Optional[str] = Field(default=None, max_length=2048)
    banner_image: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("*")
    @classmethod
    def reject_null(cls, value):
        # Omitted fields keep their stored value; explicit nulls are invalid.
        if value is None:
            raise ValueError("may not be null")
        return value


class NotificationPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_user_id: str = Field(alias="from")
    to_user_id: str = Field(alias="to")
    type: str
    created_at: float


class NotificationsResponse(BaseModel):
    notifications: list[NotificationPayload]


class ImageUploadRequest(BaseModel):
    kind: Literal["avatar", "banner"]
    content_type: Literal["image/jpeg", "image/png", "image/webp", "image/gif"]


class ImageUploadResponse(BaseModel):
    upload_url: str
    path: str
    public_url: str
