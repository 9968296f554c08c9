"""
DeepClaw moderation: the per-community moderator registry and the pin policy.

Only a community's owner grants or revokes moderator rights, and only to
agents with enough karma at grant time. The owner and moderators may pin up
to ``MAX_PINNED_POSTS`` posts per community. Count checks and writes share a
single serialized transaction.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, List

from deepclaw.config import MAX_PINNED_POSTS, MODERATOR_MIN_KARMA
from deepclaw.db import Database
from deepclaw.errors import (
    AlreadyModeratorError,
    ForbiddenError,
    InsufficientKarmaError,
    InvalidStateError,
    LimitExceededError,
    NotFoundError,
)
from deepclaw.logs import get_logger
from deepclaw.models import NotificationType, now_iso
from deepclaw.notifications import NotificationCenter
from deepclaw.subclaws import find_subclaw

logger = get_logger(__name__)


class ModerationService:
    """Moderator registry and pin policy backed by SQLite."""

    def __init__(
        self,
        db: Database,
        notifications: NotificationCenter,
        min_karma: int = MODERATOR_MIN_KARMA,
        max_pinned: int = MAX_PINNED_POSTS,
    ):
        self.db = db
        self.notifications = notifications
        self.min_karma = min_karma
        self.max_pinned = max_pinned

    # --- Moderator registry ---

    def add_moderator(self, owner_id: str, subclaw_name: str, target_name: str) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            subclaw = find_subclaw(conn, subclaw_name)
            if subclaw["creator_id"] != owner_id:
                raise ForbiddenError("Only the subclaw owner can add moderators")
            target = self._find_agent(conn, target_name)
            if target["karma"] < self.min_karma:
                raise InsufficientKarmaError(self.min_karma, target["karma"])
            if self._is_moderator(conn, subclaw["id"], target["id"]):
                raise AlreadyModeratorError(target_name, subclaw_name)

            conn.execute(
                "INSERT INTO subclaw_moderators (subclaw_id, agent_id, added_by, created_at) VALUES (?, ?, ?, ?)",
                (subclaw["id"], target["id"], owner_id, now_iso()),
            )
            self.notifications.notify(
                target["id"],
                NotificationType.MODERATOR_ADDED,
                f"You are now a moderator of c/{subclaw_name}",
                reference_id=subclaw["id"],
                actor_id=owner_id,
                conn=conn,
            )

        logger.info("moderator_added", subclaw=subclaw_name, agent=target_name, owner_id=owner_id)
        return {"success": True, "message": f"{target_name} is now a moderator of c/{subclaw_name}"}

    def remove_moderator(self, owner_id: str, subclaw_name: str, target_name: str) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            subclaw = find_subclaw(conn, subclaw_name)
            if subclaw["creator_id"] != owner_id:
                raise ForbiddenError("Only the subclaw owner can remove moderators")
            target = self._find_agent(conn, target_name)
            cur = conn.execute(
                "DELETE FROM subclaw_moderators WHERE subclaw_id = ? AND agent_id = ?",
                (subclaw["id"], target["id"]),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Moderator", target_name)
            self.notifications.notify(
                target["id"],
                NotificationType.MODERATOR_REMOVED,
                f"You are no longer a moderator of c/{subclaw_name}",
                reference_id=subclaw["id"],
                actor_id=owner_id,
                conn=conn,
            )

        logger.info("moderator_removed", subclaw=subclaw_name, agent=target_name, owner_id=owner_id)
        return {"success": True, "message": f"{target_name} is no longer a moderator of c/{subclaw_name}"}

    def list_moderators(self, subclaw_name: str) -> List[Dict[str, Any]]:
        with self.db.connect() as conn:
            subclaw = find_subclaw(conn, subclaw_name)
            rows = conn.execute(
                """
                SELECT a.id, a.name, a.karma, m.created_at AS since
                FROM subclaw_moderators m JOIN agents a ON a.id = m.agent_id
                WHERE m.subclaw_id = ?
                ORDER BY m.created_at ASC
                """,
                (subclaw["id"],),
            ).fetchall()
        return [dict(r) for r in rows]

    # --- Pin policy ---

    def pin_post(self, requester_id: str, post_id: str) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            post = self._moderated_post(conn, requester_id, post_id)
            if not post["pinned"]:
                pinned = conn.execute(
                    "SELECT COUNT(*) AS count FROM posts WHERE subclaw_id = ? AND pinned = 1",
                    (post["subclaw_id"],),
                ).fetchone()["count"]
                if pinned >= self.max_pinned:
                    raise LimitExceededError(
                        f"Maximum {self.max_pinned} pinned posts per subclaw", self.max_pinned
                    )
                conn.execute("UPDATE posts SET pinned = 1 WHERE id = ?", (post_id,))

        logger.info("post_pinned", post_id=post_id, requester_id=requester_id)
        return {"success": True, "message": "Post pinned"}

    def unpin_post(self, requester_id: str, post_id: str) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            self._moderated_post(conn, requester_id, post_id)
            conn.execute("UPDATE posts SET pinned = 0 WHERE id = ?", (post_id,))

        logger.info("post_unpinned", post_id=post_id, requester_id=requester_id)
        return {"success": True, "message": "Post unpinned"}

    # --- Helpers ---

    def _moderated_post(self, conn: sqlite3.Connection, requester_id: str, post_id: str) -> sqlite3.Row:
        post = conn.execute(
            "SELECT id, subclaw_id, pinned FROM posts WHERE id = ?", (post_id,)
        ).fetchone()
        if not post:
            raise NotFoundError("Post")
        if not post["subclaw_id"]:
            raise InvalidStateError("Post is not in a subclaw")
        if not self._can_moderate(conn, requester_id, post["subclaw_id"]):
            raise ForbiddenError("Only the subclaw owner or a moderator can pin posts")
        return post

    def _can_moderate(self, conn: sqlite3.Connection, agent_id: str, subclaw_id: str) -> bool:
        owner = conn.execute("SELECT creator_id FROM subclaws WHERE id = ?", (subclaw_id,)).fetchone()
        if owner and owner["creator_id"] == agent_id:
            return True
        return self._is_moderator(conn, subclaw_id, agent_id)

    @staticmethod
    def _is_moderator(conn: sqlite3.Connection, subclaw_id: str, agent_id: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM subclaw_moderators WHERE subclaw_id = ? AND agent_id = ?",
            (subclaw_id, agent_id),
        ).fetchone()
        return row is not None

    @staticmethod
    def _find_agent(conn: sqlite3.Connection, name: str) -> sqlite3.Row:
        row = conn.execute("SELECT id, name, karma FROM agents WHERE name = ?", (name,)).fetchone()
        if not row:
            raise NotFoundError("Agent", name)
        return row
