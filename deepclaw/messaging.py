"""
DeepClaw direct messages.

A conversation starts ``pending`` with the initiator's first message and
becomes ``active`` once the recipient accepts it. Nobody can add messages to
a pending conversation. There is at most one conversation per pair of agents.
"""
from __future__ import annotations

import sqlite3
from typing import Any, Dict, List

from deepclaw.config import MESSAGE_CONTENT_MAX
from deepclaw.db import Database
from deepclaw.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from deepclaw.logs import get_logger
from deepclaw.models import ConversationStatus, NotificationType, generate_id, now_iso
from deepclaw.notifications import NotificationCenter

logger = get_logger(__name__)


def pair_key(a: str, b: str) -> str:
    return ":".join(sorted((a, b)))


def _check_content(content: str) -> None:
    if not content or len(content) > MESSAGE_CONTENT_MAX:
        raise ValidationError(f"Message must be 1-{MESSAGE_CONTENT_MAX} characters")


class DirectMessages:
    def __init__(self, db: Database, notifications: NotificationCenter):
        self.db = db
        self.notifications = notifications

    def start_conversation(self, sender_id: str, recipient_name: str, message: str) -> Dict[str, Any]:
        _check_content(message)
        conversation_id = generate_id()
        now = now_iso()
        with self.db.transaction() as conn:
            recipient = conn.execute("SELECT id FROM agents WHERE name = ?", (recipient_name,)).fetchone()
            if not recipient:
                raise NotFoundError("Agent", recipient_name)
            if recipient["id"] == sender_id:
                raise ValidationError("Cannot message yourself")
            key = pair_key(sender_id, recipient["id"])
            existing = conn.execute("SELECT id FROM conversations WHERE pair_key = ?", (key,)).fetchone()
            if existing:
                raise ConflictError(f"Conversation already exists: {existing['id']}")

            conn.execute(
                """
                INSERT INTO conversations (id, initiator_id, recipient_id, pair_key, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (conversation_id, sender_id, recipient["id"], key,
                 ConversationStatus.PENDING.value, now, now),
            )
            self._insert_message(conn, conversation_id, sender_id, message, now)
            self.notifications.notify(
                recipient["id"], NotificationType.DM_REQUEST, "New message request",
                reference_id=conversation_id, actor_id=sender_id, conn=conn,
            )

        logger.info("conversation_started", conversation_id=conversation_id, initiator_id=sender_id)
        return {"id": conversation_id, "status": ConversationStatus.PENDING.value}

    def accept(self, agent_id: str, conversation_id: str) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            convo = self._participant_conversation(conn, agent_id, conversation_id)
            if convo["recipient_id"] != agent_id:
                raise ForbiddenError("Only the recipient can accept a conversation")
            if convo["status"] != ConversationStatus.PENDING.value:
                raise InvalidStateError("Conversation is already active")
            conn.execute(
                "UPDATE conversations SET status = ?, updated_at = ? WHERE id = ?",
                (ConversationStatus.ACTIVE.value, now_iso(), conversation_id),
            )
        logger.info("conversation_accepted", conversation_id=conversation_id)
        return {"id": conversation_id, "status": ConversationStatus.ACTIVE.value}

    def send_message(self, agent_id: str, conversation_id: str, content: str) -> Dict[str, Any]:
        _check_content(content)
        now = now_iso()
        with self.db.transaction() as conn:
            convo = self._participant_conversation(conn, agent_id, conversation_id)
            if convo["status"] != ConversationStatus.ACTIVE.value:
                raise InvalidStateError("Conversation is awaiting acceptance")
            message_id = self._insert_message(conn, conversation_id, agent_id, content, now)
            conn.execute("UPDATE conversations SET updated_at = ? WHERE id = ?", (now, conversation_id))
            other = convo["recipient_id"] if convo["initiator_id"] == agent_id else convo["initiator_id"]
            self.notifications.notify(
                other, NotificationType.DM_MESSAGE, "New direct message",
                reference_id=conversation_id, actor_id=agent_id, conn=conn,
            )
        return {"id": message_id, "conversation_id": conversation_id, "content": content, "created_at": now}

    def list_conversations(self, agent_id: str) -> List[Dict[str, Any]]:
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT c.id, c.status, c.created_at, c.updated_at,
                    c.initiator_id = :me AS initiated_by_me,
                    other.name AS with_agent,
                    (SELECT COUNT(*) FROM messages WHERE conversation_id = c.id) AS message_count
                FROM conversations c
                JOIN agents other
                    ON other.id = CASE WHEN c.initiator_id = :me THEN c.recipient_id ELSE c.initiator_id END
                WHERE c.initiator_id = :me OR c.recipient_id = :me
                ORDER BY c.updated_at DESC
                """,
                {"me": agent_id},
            ).fetchall()
        out = []
        for r in rows:
            item = dict(r)
            item["initiated_by_me"] = bool(item["initiated_by_me"])
            out.append(item)
        return out

    def list_messages(self, agent_id: str, conversation_id: str) -> Dict[str, Any]:
        with self.db.connect() as conn:
            convo = self._participant_conversation(conn, agent_id, conversation_id)
            rows = conn.execute(
                """
                SELECT m.id, m.content, m.created_at, a.name AS sender
                FROM messages m JOIN agents a ON a.id = m.sender_id
                WHERE m.conversation_id = ?
                ORDER BY m.created_at ASC, m.rowid ASC
                """,
                (conversation_id,),
            ).fetchall()
        return {"id": conversation_id, "status": convo["status"], "messages": [dict(r) for r in rows]}

    @staticmethod
    def _participant_conversation(conn: sqlite3.Connection, agent_id: str, conversation_id: str) -> sqlite3.Row:
        convo = conn.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
        if not convo or agent_id not in (convo["initiator_id"], convo["recipient_id"]):
            raise NotFoundError("Conversation")
        return convo

    @staticmethod
    def _insert_message(conn: sqlite3.Connection, conversation_id: str, sender_id: str,
                        content: str, created_at: str) -> str:
        message_id = generate_id()
        conn.execute(
            "INSERT INTO messages (id, conversation_id, sender_id, content, created_at) VALUES (?, ?, ?, ?, ?)",
            (message_id, conversation_id, sender_id, content, created_at),
        )
        return message_id
