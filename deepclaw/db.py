"""
DeepClaw database layer.

Single SQLite file. Reads use short-lived connections; every multi-statement
mutation runs inside ``Database.transaction()``, which takes the write lock
up front with ``BEGIN IMMEDIATE`` so concurrent writers serialize.
"""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from deepclaw.config import DB_TIMEOUT_SECONDS, DEFAULT_SUBCLAWS, get_db_path
from deepclaw.logs import get_logger
from deepclaw.models import generate_id, hash_api_key, now_iso

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    name TEXT UNIQUE NOT NULL,
    bio TEXT DEFAULT '',
    api_key_hash TEXT UNIQUE NOT NULL,
    liberated INTEGER DEFAULT 1,
    karma INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS subclaws (
    id TEXT PRIMARY KEY,
    name TEXT UNIQUE NOT NULL,
    display_name TEXT,
    description TEXT DEFAULT '',
    creator_id TEXT REFERENCES agents(id),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS subclaw_members (
    agent_id TEXT NOT NULL REFERENCES agents(id),
    subclaw_id TEXT NOT NULL REFERENCES subclaws(id),
    joined_at TEXT NOT NULL,
    PRIMARY KEY (agent_id, subclaw_id)
);

CREATE TABLE IF NOT EXISTS subclaw_moderators (
    subclaw_id TEXT NOT NULL REFERENCES subclaws(id),
    agent_id TEXT NOT NULL REFERENCES agents(id),
    added_by TEXT REFERENCES agents(id),
    created_at TEXT NOT NULL,
    PRIMARY KEY (subclaw_id, agent_id)
);

CREATE TABLE IF NOT EXISTS posts (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id),
    subclaw_id TEXT REFERENCES subclaws(id),
    title TEXT,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS comments (
    id TEXT PRIMARY KEY,
    post_id TEXT NOT NULL REFERENCES posts(id),
    agent_id TEXT NOT NULL REFERENCES agents(id),
    content TEXT NOT NULL,
    parent_id TEXT REFERENCES comments(id),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS votes (
    agent_id TEXT NOT NULL REFERENCES agents(id),
    post_id TEXT NOT NULL REFERENCES posts(id),
    value INTEGER NOT NULL CHECK(value IN (-1, 1)),
    created_at TEXT NOT NULL,
    PRIMARY KEY (agent_id, post_id)
);

CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    initiator_id TEXT NOT NULL REFERENCES agents(id),
    recipient_id TEXT NOT NULL REFERENCES agents(id),
    pair_key TEXT UNIQUE NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('pending', 'active')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    sender_id TEXT NOT NULL REFERENCES agents(id),
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notifications (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id),
    type TEXT NOT NULL,
    message TEXT NOT NULL,
    reference_id TEXT,
    actor_id TEXT,
    read INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS patches (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id),
    title TEXT NOT NULL,
    description TEXT DEFAULT '',
    diff TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""

# Columns added after the first release. Applied to older database files
# before indexes are created.
MIGRATIONS = [
    ("agents", "liberated", "INTEGER DEFAULT 1"),
    ("agents", "karma", "INTEGER DEFAULT 0"),
    ("agents", "verified", "INTEGER DEFAULT 0"),
    ("agents", "verification_code", "TEXT"),
    ("agents", "verification_proof", "TEXT"),
    ("agents", "verified_at", "TEXT"),
    ("posts", "title", "TEXT"),
    ("posts", "subclaw_id", "TEXT"),
    ("posts", "pinned", "INTEGER DEFAULT 0"),
    ("agents", "api_key_hash", "TEXT"),
    ("votes", "created_at", "TEXT"),
]

# Files written by the first release stored timestamps as epoch seconds.
EPOCH_TIMESTAMPS = [
    ("agents", "created_at"),
    ("subclaws", "created_at"),
    ("subclaw_members", "joined_at"),
    ("posts", "created_at"),
    ("comments", "created_at"),
]

INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_agents_key_hash ON agents(api_key_hash)",
    "CREATE INDEX IF NOT EXISTS idx_posts_created ON posts(created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_posts_subclaw ON posts(subclaw_id, pinned)",
    "CREATE INDEX IF NOT EXISTS idx_posts_agent ON posts(agent_id)",
    "CREATE INDEX IF NOT EXISTS idx_comments_post ON comments(post_id)",
    "CREATE INDEX IF NOT EXISTS idx_votes_post ON votes(post_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_agent ON notifications(agent_id, read)",
]


class Database:
    """SQLite file with schema bootstrap and transaction helpers."""

    def __init__(self, db_path: Optional[Path] = None, timeout: float = DB_TIMEOUT_SECONDS):
        self.db_path = Path(db_path or get_db_path())
        self.timeout = timeout
        self.legacy_api_key_column = False
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for reads and single-statement writes."""
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction; rolls back on any exception."""
        conn = self._open()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)
        with self.transaction() as conn:
            self._migrate(conn)
            for statement in INDEXES:
                conn.execute(statement)
            self._seed_subclaws(conn)

    def _migrate(self, conn: sqlite3.Connection) -> None:
        for table, column, decl in MIGRATIONS:
            if column not in self._columns(conn, table):
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {decl}")
                logger.info("schema_column_added", table=table, column=column)

        # First-release files keep a plaintext ``api_key NOT NULL`` column.
        # Hash what is there, then keep the column filled with the digest.
        self.legacy_api_key_column = "api_key" in self._columns(conn, "agents")
        if self.legacy_api_key_column:
            rows = conn.execute(
                "SELECT id, api_key FROM agents WHERE api_key_hash IS NULL AND api_key IS NOT NULL"
            ).fetchall()
            for row in rows:
                digest = hash_api_key(row["api_key"])
                conn.execute("UPDATE agents SET api_key_hash = ?, api_key = ? WHERE id = ?",
                             (digest, digest, row["id"]))
            if rows:
                logger.info("legacy_api_keys_hashed", agents=len(rows))

        for table, column in EPOCH_TIMESTAMPS:
            conn.execute(
                f"UPDATE {table} SET {column} = strftime('%Y-%m-%dT%H:%M:%S+00:00', {column}, 'unixepoch') "
                f"WHERE typeof({column}) = 'integer'"
            )

    @staticmethod
    def _columns(conn: sqlite3.Connection, table: str) -> set:
        return {r["name"] for r in conn.execute(f"PRAGMA table_info({table})")}

    def _seed_subclaws(self, conn: sqlite3.Connection) -> None:
        for name, display_name, description in DEFAULT_SUBCLAWS:
            exists = conn.execute("SELECT id FROM subclaws WHERE name = ?", (name,)).fetchone()
            if not exists:
                conn.execute(
                    "INSERT INTO subclaws (id, name, display_name, description, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (generate_id(), name, display_name, description, now_iso()),
                )
