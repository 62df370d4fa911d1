"""
User profile operations: first-contact sync, lookups, profile updates,
notification listing and profile image uploads.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from social_backend.db import DbClient, NotificationRecord, UserRecord, new_user_id
from social_backend.errors import (
    ConflictError,
    DuplicateUserError,
    InvalidOperationError,
    NotFoundError,
)
from social_backend.identity import ExternalProfile, IdentityProvider
from social_backend.storage import StorageClient

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}
IMAGE_KINDS = ("avatar", "banner")


def username_from_email(email: str) -> str:
    local = email.split("@", 1)[0].lower()
    local = re.sub(r"[^a-z0-9._-]", "", local)
    return local or "user"


def _suffixed_username(base: str, external_id: str) -> str:
    tail = re.sub(r"[^a-z0-9]", "", external_id.lower())[-6:]
    return f"{base}_{tail or uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class ImageUpload:
    upload_url: str
    path: str
    public_url: str


class UserService:
    def __init__(
        self,
        db: DbClient,
        identity: IdentityProvider,
        storage: Optional[StorageClient] = None,
        upload_url_expires_seconds: int = 900,
    ):
        self.db = db
        self.identity = identity
        self.storage = storage
        self.upload_url_expires_seconds = upload_url_expires_seconds

    def sync_user(self, external_id: str) -> tuple[UserRecord, bool]:
        """
        Return the user for ``external_id``, creating it from the identity
        provider's profile on first contact. The flag is True when created.
        """
        existing = self.db.get_user_by_external_id(external_id)
        if existing:
            return existing, False

        profile = self.identity.fetch_profile(external_id)
        record = self._record_from_profile(profile, username_from_email(profile.email))
        try:
            return self._create(record), True
        except DuplicateUserError as exc:
            if exc.field != "username":
                return self._existing_after_race(external_id), False

        record.username = _suffixed_username(record.username, external_id)
        try:
            return self._create(record), True
        except DuplicateUserError:
            return self._existing_after_race(external_id), False

    def _record_from_profile(self, profile: ExternalProfile, username: str) -> UserRecord:
        return UserRecord(
            user_id=new_user_id(),
            external_id=profile.external_id,
            email=profile.email,
            username=username,
            first_name=profile.first_name,
            last_name=profile.last_name,
            profile_picture=profile.image_url,
        )

    def _create(self, record: UserRecord) -> UserRecord:
        user = self.db.create_user(record)
        logger.info("Created user %s for identity %s", user.user_id, user.external_id)
        return user

    def _existing_after_race(self, external_id: str) -> UserRecord:
        existing = self.db.get_user_by_external_id(external_id)
        if not existing:
            # The collision was not on this identity; nothing to fall back to.
            raise ConflictError("Could not create user")
        logger.warning("Concurrent sync for identity %s; using existing user", external_id)
        return existing

    def get_user_profile(self, username: str) -> UserRecord:
        user = self.db.get_user_by_username(username)
        if not user:
            raise NotFoundError()
        return user

    def get_current_user(self, external_id: str) -> UserRecord:
        user = self.db.get_user_by_external_id(external_id)
        if not user:
            raise NotFoundError()
        return user

    def update_profile(self, external_id: str, fields: dict) -> UserRecord:
        fields = {key: value for key, value in fields.items() if value is not None}
        try:
            user = self.db.update_user_profile(external_id, fields)
        except DuplicateUserError as exc:
            raise ConflictError("Username already taken") from exc
        if not user:
            raise NotFoundError()
        return user

    def list_notifications(
        self, external_id: str, limit: int = 50
    ) -> list[NotificationRecord]:
        user = self.get_current_user(external_id)
        return self.db.list_notifications(user.user_id, limit=limit)

    def create_image_upload(
        self, external_id: str, kind: str, content_type: str
    ) -> ImageUpload:
        if self.storage is None:
            raise RuntimeError("Storage client is not configured")
        if kind not in IMAGE_KINDS:
            raise InvalidOperationError(f"Unsupported image kind: {kind}")
        extension = IMAGE_EXTENSIONS.get(content_type)
        if extension is None:
            raise InvalidOperationError(f"Unsupported image type: {content_type}")
        user = self.get_current_user(external_id)
        path = f"users/{user.user_id}/{kind}/{uuid.uuid4().hex}.{extension}"
        upload_url = self.storage.presign_put(
            path, content_type, expires_in=self.upload_url_expires_seconds
        )
        return ImageUpload(
            upload_url=upload_url, path=path, public_url=self.storage.public_url(path)
        )
