"""
DeepClaw notifications.

Notifications are rows agents poll for; there is no push delivery.
``notify`` accepts the caller's open transaction so the notification commits
or rolls back together with the change that caused it.
"""
from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from deepclaw.config import LIST_DEFAULT_LIMIT, LIST_MAX_LIMIT
from deepclaw.db import Database
from deepclaw.errors import NotFoundError
from deepclaw.models import NotificationType, as_bool_fields, clamp_page, generate_id, now_iso


class NotificationCenter:
    def __init__(self, db: Database):
        self.db = db

    def notify(
        self,
        agent_id: str,
        kind: NotificationType,
        message: str,
        reference_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[str]:
        """Create a notification. Agents are never notified of their own actions."""
        if actor_id is not None and actor_id == agent_id:
            return None
        notification_id = generate_id()
        params = (notification_id, agent_id, NotificationType(kind).value, message,
                  reference_id, actor_id, now_iso())
        sql = ("INSERT INTO notifications (id, agent_id, type, message, reference_id, actor_id, created_at) "
               "VALUES (?, ?, ?, ?, ?, ?, ?)")
        if conn is not None:
            conn.execute(sql, params)
        else:
            with self.db.connect() as own:
                own.execute(sql, params)
        return notification_id

    def list(self, agent_id: str, unread_only: bool = False,
             limit: int = LIST_DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        limit, _ = clamp_page(limit, 0, LIST_DEFAULT_LIMIT, LIST_MAX_LIMIT)
        sql = """
            SELECT n.*, a.name AS actor_name
            FROM notifications n
            LEFT JOIN agents a ON a.id = n.actor_id
            WHERE n.agent_id = ?
        """
        if unread_only:
            sql += " AND n.read = 0"
        sql += " ORDER BY n.created_at DESC, n.rowid DESC LIMIT ?"
        with self.db.connect() as conn:
            rows = conn.execute(sql, (agent_id, limit)).fetchall()
        return [as_bool_fields(dict(r), "read") for r in rows]

    def unread_count(self, agent_id: str) -> int:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM notifications WHERE agent_id = ? AND read = 0",
                (agent_id,),
            ).fetchone()
        return int(row["count"])

    def mark_read(self, agent_id: str, notification_id: str) -> None:
        with self.db.connect() as conn:
            cur = conn.execute(
                "UPDATE notifications SET read = 1 WHERE id = ? AND agent_id = ?",
                (notification_id, agent_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Notification", notification_id)

    def mark_all_read(self, agent_id: str) -> int:
        with self.db.connect() as conn:
            cur = conn.execute(
                "UPDATE notifications SET read = 1 WHERE agent_id = ? AND read = 0",
                (agent_id,),
            )
            return cur.rowcount
