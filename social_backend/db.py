"""
Database abstraction for Postgres and an in-memory test implementation.

Both stores keep the follow relationship consistent on both sides: the
SQL store persists one ``user_follows`` row per edge and derives
``following``/``followers`` from it, the in-memory store updates both sets
under a single lock.
"""

from __future__ import annotations

import copy
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Dict, Optional, Protocol

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    String,
    create_engine,
    select,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from social_backend.errors import DuplicateUserError

PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "username",
    "bio",
    "location",
    "profile_picture",
    "banner_image",
)


class NotificationType(StrEnum):
    FOLLOW = "follow"
    LIKE = "like"
    COMMENT = "comment"


class DbClient(Protocol):
    """Interface for database access."""

    def get_user(self, user_id: str) -> Optional["UserRecord"]:
        ...

    def get_user_by_external_id(self, external_id: str) -> Optional["UserRecord"]:
        ...

    def get_user_by_username(self, username: str) -> Optional["UserRecord"]:
        ...

    def create_user(self, user: "UserRecord") -> "UserRecord":
        """Insert a user; raises DuplicateUserError on external_id/username."""
        ...

    def update_user_profile(
        self, external_id: str, fields: dict
    ) -> Optional["UserRecord"]:
        ...

    def add_follow(self, follower_id: str, followee_id: str) -> bool:
        """Create the edge on both sides. Returns False if it already existed."""
        ...

    def remove_follow(self, follower_id: str, followee_id: str) -> bool:
        """Remove the edge on both sides. Returns False if it did not exist."""
        ...

    def create_notification(
        self, from_user_id: str, to_user_id: str, type: NotificationType
    ) -> "NotificationRecord":
        ...

    def list_notifications(
        self, to_user_id: str, limit: int = 50
    ) -> list["NotificationRecord"]:
        ...


@dataclass
class UserRecord:
    user_id: str
    external_id: str
    email: str
    username: str
    first_name: str = ""
    last_name: str = ""
    profile_picture: str = ""
    banner_image: str = ""
    bio: str = ""
    location: str = ""
    following: list[str] = field(default_factory=list)
    followers: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.user_id,
            "external_id": self.external_id,
            "email": self.email,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "profile_picture": self.profile_picture,
            "banner_image": self.banner_image,
            "bio": self.bio,
            "location": self.location,
            "following": list(self.following),
            "followers": list(self.followers),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class NotificationRecord:
    notification_id: str
    from_user_id: str
    to_user_id: str
    type: NotificationType
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.notification_id,
            "from": self.from_user_id,
            "to": self.to_user_id,
            "type": self.type.value,
            "created_at": self.created_at,
        }


def new_user_id() -> str:
    return uuid.uuid4().hex


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.notifications: list[NotificationRecord] = []
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.notifications.clear()

    def _find(self, attr: str, value: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if getattr(user, attr) == value:
                return user
        return None

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self.users.get(user_id)
            return copy.deepcopy(user) if user else None

    def get_user_by_external_id(self, external_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._find("external_id", external_id)
            return copy.deepcopy(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._find("username", username)
            return copy.deepcopy(user) if user else None

    def create_user(self, user: UserRecord) -> UserRecord:
        with self._lock:
            if self._find("external_id", user.external_id):
                raise DuplicateUserError("external_id", user.external_id)
            if self._find("username", user.username):
                raise DuplicateUserError("username", user.username)
            stored = copy.deepcopy(user)
            self.users[stored.user_id] = stored
            return copy.deepcopy(stored)

    def update_user_profile(
        self, external_id: str, fields: dict
    ) -> Optional[UserRecord]:
        with self._lock:
            user = self._find("external_id", external_id)
            if not user:
                return None
            username = fields.get("username")
            if username and username != user.username:
                other = self._find("username", username)
                if other:
                    raise DuplicateUserError("username", username)
            for key, value in fields.items():
                if key in PROFILE_FIELDS and value is not None:
                    setattr(user, key, value)
            user.updated_at = time.time()
            return copy.deepcopy(user)

    def add_follow(self, follower_id: str, followee_id: str) -> bool:
        with self._lock:
            follower = self.users.get(follower_id)
            followee = self.users.get(followee_id)
            if not follower or not followee:
                return False
            if followee_id in follower.following:
                return False
            follower.following.append(followee_id)
            followee.followers.append(follower_id)
            return True

    def remove_follow(self, follower_id: str, followee_id: str) -> bool:
        with self._lock:
            follower = self.users.get(follower_id)
            followee = self.users.get(followee_id)
            if not follower or followee_id not in follower.following:
                return False
            follower.following.remove(followee_id)
            if followee and follower_id in followee.followers:
                followee.followers.remove(follower_id)
            return True

    def create_notification(
        self, from_user_id: str, to_user_id: str, type: NotificationType
    ) -> NotificationRecord:
        record = NotificationRecord(
            notification_id=uuid.uuid4().hex,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            type=NotificationType(type),
        )
        with self._lock:
            self.notifications.append(record)
        return record

    def list_notifications(
        self, to_user_id: str, limit: int = 50
    ) -> list[NotificationRecord]:
        with self._lock:
            items = [n for n in self.notifications if n.to_user_id == to_user_id]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items[:limit]


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str, timeout_seconds: int = 5):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        connect_args = {}
        if make_url(database_url).get_backend_name() == "postgresql":
            connect_args["connect_timeout"] = timeout_seconds
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
            connect_args=connect_args,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_user_record(self, session: Session, row: "UserRow") -> UserRecord:
        following = session.execute(
            select(FollowRow.followee_id)
            .where(FollowRow.follower_id == row.user_id)
            .order_by(FollowRow.created_at.asc())
        ).scalars().all()
        followers = session.execute(
            select(FollowRow.follower_id)
            .where(FollowRow.followee_id == row.user_id)
            .order_by(FollowRow.created_at.asc())
        ).scalars().all()
        return UserRecord(
            user_id=row.user_id,
            external_id=row.external_id,
            email=row.email,
            username=row.username,
            first_name=row.first_name,
            last_name=row.last_name,
            profile_picture=row.profile_picture,
            banner_image=row.banner_image,
            bio=row.bio,
            location=row.location,
            following=list(following),
            followers=list(followers),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _find_one(self, session: Session, column, value: str) -> Optional["UserRow"]:
        return session.execute(
            select(UserRow).where(column == value).limit(1)
        ).scalar_one_or_none()

    def _duplicate_field(self, user_id: str, external_id: str, username: str) -> str:
        """Figure out which unique constraint a failed write hit."""
        with self.Session() as session:
            existing = self._find_one(session, UserRow.external_id, external_id)
            if existing and existing.user_id != user_id:
                return "external_id"
        return "username"

    def _username_taken(self, user_id: str, username: str) -> bool:
        with self.Session() as session:
            other = self._find_one(session, UserRow.username, username)
            return bool(other and other.user_id != user_id)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            return self._to_user_record(session, row)

    def get_user_by_external_id(self, external_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = self._find_one(session, UserRow.external_id, external_id)
            if not row:
                return None
            return self._to_user_record(session, row)

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = self._find_one(session, UserRow.username, username)
            if not row:
                return None
            return self._to_user_record(session, row)

    def create_user(self, user: UserRecord) -> UserRecord:
        with self.Session() as session:
            row = UserRow(
                user_id=user.user_id,
                external_id=user.external_id,
                email=user.email,
                username=user.username,
                first_name=user.first_name,
                last_name=user.last_name,
                profile_picture=user.profile_picture,
                banner_image=user.banner_image,
                bio=user.bio,
                location=user.location,
                created_at=user.created_at,
                updated_at=user.updated_at,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                field_name = self._duplicate_field(
                    user.user_id, user.external_id, user.username
                )
                raise DuplicateUserError(
                    field_name, getattr(user, field_name)
                ) from None
            session.refresh(row)
            return self._to_user_record(session, row)

    def update_user_profile(
        self, external_id: str, fields: dict
    ) -> Optional[UserRecord]:
        with self.Session() as session:
            row = self._find_one(session, UserRow.external_id, external_id)
            if not row:
                return None
            username = fields.get("username")
            if username and username != row.username:
                other = self._find_one(session, UserRow.username, username)
                if other:
                    raise DuplicateUserError("username", username)
            for key, value in fields.items():
                if key in PROFILE_FIELDS and value is not None:
                    setattr(row, key, value)
            user_id = row.user_id
            row.updated_at = time.time()
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                if not username or not self._username_taken(user_id, username):
                    raise
                # Lost a race against another user claiming the same name.
                raise DuplicateUserError("username", username) from None
            session.refresh(row)
            return self._to_user_record(session, row)

    def add_follow(self, follower_id: str, followee_id: str) -> bool:
        with self.Session() as session:
            if session.get(FollowRow, (follower_id, followee_id)):
                return False
            session.add(
                FollowRow(
                    follower_id=follower_id,
                    followee_id=followee_id,
                    created_at=time.time(),
                )
            )
            try:
                session.commit()
            except IntegrityError:
                # Lost a race against an identical insert.
                session.rollback()
                return False
            return True

    def remove_follow(self, follower_id: str, followee_id: str) -> bool:
        with self.Session() as session:
            row = session.get(FollowRow, (follower_id, followee_id))
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def create_notification(
        self, from_user_id: str, to_user_id: str, type: NotificationType
    ) -> NotificationRecord:
        record = NotificationRecord(
            notification_id=uuid.uuid4().hex,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            type=NotificationType(type),
        )
        with self.Session() as session:
            session.add(
                NotificationRow(
                    notification_id=record.notification_id,
                    from_user_id=record.from_user_id,
                    to_user_id=record.to_user_id,
                    type=record.type.value,
                    created_at=record.created_at,
                )
            )
            session.commit()
        return record

    def list_notifications(
        self, to_user_id: str, limit: int = 50
    ) -> list[NotificationRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(NotificationRow)
                .where(NotificationRow.to_user_id == to_user_id)
                .order_by(NotificationRow.created_at.desc())
                .limit(limit)
            ).scalars().all()
            return [
                NotificationRecord(
                    notification_id=row.notification_id,
                    from_user_id=row.from_user_id,
                    to_user_id=row.to_user_id,
                    type=NotificationType(row.type),
                    created_at=row.created_at,
                )
                for row in rows
            ]


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True)
    external_id = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=False)
    username = Column(String, nullable=False, unique=True, index=True)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    profile_picture = Column(String, nullable=False, default="")
    banner_image = Column(String, nullable=False, default="")
    bio = Column(String, nullable=False, default="")
    location = Column(String, nullable=False, default="")
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class FollowRow(Base):
    __tablename__ = "user_follows"

    follower_id = Column(String, ForeignKey("users.user_id"), primary_key=True)
    followee_id = Column(
        String, ForeignKey("users.user_id"), primary_key=True, index=True
    )
    created_at = Column(Float, nullable=False)


class NotificationRow(Base):
    __tablename__ = "notifications"

    notification_id = Column(String, primary_key=True)
    from_user_id = Column(String, ForeignKey("users.user_id"), nullable=False)
    to_user_id = Column(
        String, ForeignKey("users.user_id"), nullable=False, index=True
    )
    type = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)
