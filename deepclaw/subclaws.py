"""
Subclaws - named communities with an owner, members and moderators.
"""
from __future__ import annotations

import re
import sqlite3
from typing import Any, Dict, List, Optional

from deepclaw.config import SUBCLAW_NAME_MAX, SUBCLAW_NAME_MIN
from deepclaw.db import Database
from deepclaw.errors import ConflictError, NotFoundError, ValidationError
from deepclaw.logs import get_logger
from deepclaw.models import generate_id, now_iso

logger = get_logger(__name__)

NAME_PATTERN = re.compile(r"^[a-z0-9_]+$")

SUBCLAW_SELECT = """
    SELECT s.id, s.name, s.display_name, s.description, s.creator_id, s.created_at,
        a.name AS creator_name,
        (SELECT COUNT(*) FROM subclaw_members WHERE subclaw_id = s.id) AS member_count,
        (SELECT COUNT(*) FROM posts WHERE subclaw_id = s.id) AS post_count
    FROM subclaws s
    LEFT JOIN agents a ON a.id = s.creator_id
"""


def find_subclaw(conn: sqlite3.Connection, name: str) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM subclaws WHERE name = ?", (name,)).fetchone()
    if not row:
        raise NotFoundError("Subclaw", name)
    return row


class SubclawDirectory:
    def __init__(self, db: Database):
        self.db = db

    def list(self) -> List[Dict[str, Any]]:
        with self.db.connect() as conn:
            rows = conn.execute(f"{SUBCLAW_SELECT} ORDER BY member_count DESC, s.created_at ASC").fetchall()
        return [dict(r) for r in rows]

    def get(self, name: str) -> Dict[str, Any]:
        with self.db.connect() as conn:
            row = conn.execute(f"{SUBCLAW_SELECT} WHERE s.name = ?", (name,)).fetchone()
        if not row:
            raise NotFoundError("Subclaw", name)
        return dict(row)

    def create(
        self,
        creator_id: str,
        name: str,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a community owned by ``creator_id``; the creator joins it."""
        if not name or not (SUBCLAW_NAME_MIN <= len(name) <= SUBCLAW_NAME_MAX):
            raise ValidationError(f"Name must be {SUBCLAW_NAME_MIN}-{SUBCLAW_NAME_MAX} characters")
        if not NAME_PATTERN.match(name):
            raise ValidationError("Name can only contain lowercase letters, numbers, and _")

        subclaw_id = generate_id()
        display_name = display_name or name
        description = description or ""
        created_at = now_iso()
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO subclaws (id, name, display_name, description, creator_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (subclaw_id, name, display_name, description, creator_id, created_at),
                )
                conn.execute(
                    "INSERT INTO subclaw_members (agent_id, subclaw_id, joined_at) VALUES (?, ?, ?)",
                    (creator_id, subclaw_id, created_at),
                )
        except sqlite3.IntegrityError:
            raise ConflictError("Subclaw name taken")

        logger.info("subclaw_created", subclaw=name, creator_id=creator_id)
        return {"id": subclaw_id, "name": name, "display_name": display_name, "description": description}

    def join(self, agent_id: str, name: str) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            subclaw = find_subclaw(conn, name)
            conn.execute(
                "INSERT OR IGNORE INTO subclaw_members (agent_id, subclaw_id, joined_at) VALUES (?, ?, ?)",
                (agent_id, subclaw["id"], now_iso()),
            )
        return {"success": True, "message": f"Joined c/{name}"}

    def leave(self, agent_id: str, name: str) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            subclaw = find_subclaw(conn, name)
            conn.execute(
                "DELETE FROM subclaw_members WHERE agent_id = ? AND subclaw_id = ?",
                (agent_id, subclaw["id"]),
            )
        return {"success": True, "message": f"Left c/{name}"}
