"""
Follow/unfollow toggle between two users.

The edge write itself is delegated to the store, which updates both sides
(requester's ``following`` and target's ``followers``) as one operation. The
follow notification is written afterwards; if that write fails the edge is
removed again so an edge never exists without its notification.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from social_backend.db import DbClient, NotificationType
from social_backend.errors import InvalidOperationError, NotFoundError

logger = logging.getLogger(__name__)


class FollowAction(StrEnum):
    FOLLOWED = "followed"
    UNFOLLOWED = "unfollowed"


@dataclass(frozen=True)
class FollowResult:
    action: FollowAction
    follower_id: str
    followee_id: str

    @property
    def message(self) -> str:
        if self.action == FollowAction.FOLLOWED:
            return "User followed successfully"
        return "User unfollowed successfully"


class FollowService:
    def __init__(self, db: DbClient):
        self.db = db

    def toggle_follow(
        self, requester_external_id: str, target_user_id: str
    ) -> FollowResult:
        requester = self.db.get_user_by_external_id(requester_external_id)
        if not requester:
            raise NotFoundError()
        if requester.user_id == target_user_id:
            raise InvalidOperationError("You cannot follow yourself")

        target = self.db.get_user(target_user_id)
        if not target:
            raise NotFoundError()

        if target_user_id in requester.following:
            self._unfollow(requester.user_id, target_user_id)
            return FollowResult(
                FollowAction.UNFOLLOWED, requester.user_id, target_user_id
            )

        self._follow(requester.user_id, target_user_id)
        return FollowResult(FollowAction.FOLLOWED, requester.user_id, target_user_id)

    def _follow(self, follower_id: str, followee_id: str) -> None:
        created = self.db.add_follow(follower_id, followee_id)
        if not created:
            follower = self.db.get_user(follower_id)
            if (
                not follower
                or followee_id not in follower.following
                or not self.db.get_user(followee_id)
            ):
                # No edge was written: one side vanished after the lookups.
                raise NotFoundError()
            # A concurrent request created the edge and owns its notification.
            logger.warning(
                "Follow %s -> %s already existed; skipping notification",
                follower_id,
                followee_id,
            )
            return

        try:
            self.db.create_notification(
                follower_id, followee_id, NotificationType.FOLLOW
            )
        except Exception:
            logger.warning(
                "Notification for %s -> %s failed; removing follow edge",
                follower_id,
                followee_id,
            )
            self.db.remove_follow(follower_id, followee_id)
            raise
        logger.info("User %s followed %s", follower_id, followee_id)

    def _unfollow(self, follower_id: str, followee_id: str) -> None:
        removed = self.db.remove_follow(follower_id, followee_id)
        if not removed:
            logger.warning(
                "Follow %s -> %s was already gone", follower_id, followee_id
            )
            return
        logger.info("User %s unfollowed %s", follower_id, followee_id)
