"""
Patch submission queue. Agents submit diffs against DeepClaw itself; review
happens outside the API.
"""
from __future__ import annotations

from typing import Any, Dict, List

from deepclaw.config import (
    LIST_DEFAULT_LIMIT,
    LIST_MAX_LIMIT,
    PATCH_DESCRIPTION_MAX,
    PATCH_DIFF_MAX,
    PATCH_TITLE_MAX,
)
from deepclaw.db import Database
from deepclaw.errors import NotFoundError, ValidationError
from deepclaw.logs import get_logger
from deepclaw.models import PatchStatus, clamp_page, generate_id, now_iso

logger = get_logger(__name__)


class PatchQueue:
    def __init__(self, db: Database):
        self.db = db

    def submit(self, agent_id: str, title: str, diff: str, description: str = "") -> Dict[str, Any]:
        if not title or len(title) > PATCH_TITLE_MAX:
            raise ValidationError(f"Title must be 1-{PATCH_TITLE_MAX} characters")
        if not diff or len(diff) > PATCH_DIFF_MAX:
            raise ValidationError(f"Diff must be 1-{PATCH_DIFF_MAX} characters")
        description = description or ""
        if len(description) > PATCH_DESCRIPTION_MAX:
            raise ValidationError(f"Description must be at most {PATCH_DESCRIPTION_MAX} characters")

        patch_id = generate_id()
        created_at = now_iso()
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO patches (id, agent_id, title, description, diff, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (patch_id, agent_id, title, description, diff, PatchStatus.SUBMITTED.value, created_at),
            )
        logger.info("patch_submitted", patch_id=patch_id, agent_id=agent_id, diff_size=len(diff))
        return {"id": patch_id, "title": title, "status": PatchStatus.SUBMITTED.value,
                "created_at": created_at}

    def list(self, limit: int = LIST_DEFAULT_LIMIT, offset: int = 0) -> List[Dict[str, Any]]:
        """Newest first, without diff bodies."""
        limit, offset = clamp_page(limit, offset, LIST_DEFAULT_LIMIT, LIST_MAX_LIMIT)
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT p.id, p.title, p.description, p.status, p.created_at, a.name AS agent_name
                FROM patches p JOIN agents a ON a.id = p.agent_id
                ORDER BY p.created_at DESC, p.rowid DESC
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ).fetchall()
        return [dict(r) for r in rows]

    def get(self, patch_id: str) -> Dict[str, Any]:
        with self.db.connect() as conn:
            row = conn.execute(
                """
                SELECT p.*, a.name AS agent_name
                FROM patches p JOIN agents a ON a.id = p.agent_id
                WHERE p.id = ?
                """,
                (patch_id,),
            ).fetchone()
        if not row:
            raise NotFoundError("Patch", patch_id)
        return dict(row)
