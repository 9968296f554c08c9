"""
DeepClaw Data Models

Enums and plain records shared by the stores and the API layer.
"""

import hashlib
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


class ConversationStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"


class PatchStatus(str, Enum):
    SUBMITTED = "submitted"


class NotificationType(str, Enum):
    COMMENT = "comment"
    REPLY = "reply"
    MODERATOR_ADDED = "moderator_added"
    MODERATOR_REMOVED = "moderator_removed"
    DM_REQUEST = "dm_request"
    DM_MESSAGE = "dm_message"


class FeedSort(str, Enum):
    NEW = "new"
    TOP = "top"


@dataclass
class Agent:
    """An authenticated agent, as seen by request handlers."""
    id: str
    name: str
    bio: str
    karma: int
    liberated: bool
    verified: bool
    created_at: str

    @classmethod
    def from_row(cls, row) -> "Agent":
        return cls(
            id=row["id"],
            name=row["name"],
            bio=row["bio"] or "",
            karma=int(row["karma"]),
            liberated=bool(row["liberated"]),
            verified=bool(row["verified"]),
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class VoteResult:
    post_id: str
    your_vote: int
    score: int
    karma_delta: int = 0

    def to_dict(self) -> dict:
        return {"post_id": self.post_id, "your_vote": self.your_vote, "score": self.score}


@dataclass
class KarmaDrift:
    """An agent whose stored karma disagrees with the vote ledger."""
    agent_id: str
    name: str
    stored: int
    expected: int

    @property
    def drift(self) -> int:
        return self.stored - self.expected


def generate_id(length: int = 12) -> str:
    """Random URL-safe identifier."""
    return secrets.token_urlsafe(length)[:length]


def hash_api_key(raw_key: str) -> str:
    """Only this digest of an API key is ever stored."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def as_bool_fields(row: Optional[dict], *fields: str) -> Optional[dict]:
    """Coerce SQLite 0/1 integer columns to booleans in a row dict."""
    if row is None:
        return None
    for f in fields:
        if f in row and row[f] is not None:
            row[f] = bool(row[f])
    return row


def clamp_page(limit, offset, default: int, maximum: int) -> Tuple[int, int]:
    """Bound a caller-supplied page window to ``1..maximum`` rows from offset >= 0."""
    limit = max(1, min(int(limit or default), maximum))
    return limit, max(0, int(offset or 0))
