"""
DeepClaw vote ledger and karma accumulator.

One ledger row per (voter, post) with value -1 or 1; no row means no vote.
Each agent's karma is a running counter moved by the delta between a voter's
old and new value. The ledger change and the karma delta commit together, so
karma always equals the sum of current votes on the agent's posts.
``audit_karma`` verifies that and ``reconcile_karma`` repairs databases
written by older, non-transactional versions.
"""
from __future__ import annotations

from typing import List

from deepclaw.db import Database
from deepclaw.errors import NotFoundError, ValidationError
from deepclaw.logs import get_logger
from deepclaw.models import KarmaDrift, VoteResult, now_iso

logger = get_logger(__name__)

VALID_VOTES = (-1, 0, 1)

EXPECTED_KARMA_SQL = """
    SELECT a.id, a.name, a.karma AS stored,
        COALESCE((
            SELECT SUM(v.value) FROM votes v
            JOIN posts p ON p.id = v.post_id
            WHERE p.agent_id = a.id
        ), 0) AS expected
    FROM agents a
"""


class VoteLedger:
    def __init__(self, db: Database):
        self.db = db

    def apply_vote(self, voter_id: str, post_id: str, value: int) -> VoteResult:
        """
        Set ``voter_id``'s vote on ``post_id`` to ``value`` (1, -1, or 0 to clear).

        Repeating the same vote is a no-op for karma. Voting on your own post
        is allowed and moves your own karma.
        """
        if isinstance(value, bool) or value not in VALID_VOTES:
            raise ValidationError("Value must be 1, -1, or 0")

        with self.db.transaction() as conn:
            post = conn.execute("SELECT id, agent_id FROM posts WHERE id = ?", (post_id,)).fetchone()
            if not post:
                raise NotFoundError("Post")

            existing = conn.execute(
                "SELECT value FROM votes WHERE agent_id = ? AND post_id = ?",
                (voter_id, post_id),
            ).fetchone()
            old_value = existing["value"] if existing else 0

            if value == 0:
                conn.execute("DELETE FROM votes WHERE agent_id = ? AND post_id = ?", (voter_id, post_id))
            else:
                conn.execute(
                    """
                    INSERT INTO votes (agent_id, post_id, value, created_at) VALUES (?, ?, ?, ?)
                    ON CONFLICT(agent_id, post_id) DO UPDATE SET value = excluded.value
                    """,
                    (voter_id, post_id, value, now_iso()),
                )

            delta = value - old_value
            if delta:
                conn.execute("UPDATE agents SET karma = karma + ? WHERE id = ?", (delta, post["agent_id"]))

            score = conn.execute(
                "SELECT COALESCE(SUM(value), 0) AS score FROM votes WHERE post_id = ?", (post_id,)
            ).fetchone()["score"]

        logger.info("vote_applied", voter_id=voter_id, post_id=post_id, value=value,
                    karma_delta=delta, author_id=post["agent_id"])
        return VoteResult(post_id=post_id, your_vote=value, score=int(score), karma_delta=delta)

    def audit_karma(self) -> List[KarmaDrift]:
        """Agents whose stored karma disagrees with the vote ledger."""
        with self.db.connect() as conn:
            rows = conn.execute(EXPECTED_KARMA_SQL).fetchall()
        drifts = [
            KarmaDrift(agent_id=r["id"], name=r["name"], stored=int(r["stored"]), expected=int(r["expected"]))
            for r in rows
            if int(r["stored"]) != int(r["expected"])
        ]
        for d in drifts:
            logger.warning("karma_drift", agent_id=d.agent_id, stored=d.stored, expected=d.expected)
        return drifts

    def reconcile_karma(self) -> List[KarmaDrift]:
        """Rewrite drifting karma counters from the ledger. Returns what was fixed."""
        with self.db.transaction() as conn:
            rows = conn.execute(EXPECTED_KARMA_SQL).fetchall()
            fixed = []
            for r in rows:
                if int(r["stored"]) == int(r["expected"]):
                    continue
                conn.execute("UPDATE agents SET karma = ? WHERE id = ?", (int(r["expected"]), r["id"]))
                fixed.append(KarmaDrift(agent_id=r["id"], name=r["name"],
                                        stored=int(r["stored"]), expected=int(r["expected"])))
        if fixed:
            logger.info("karma_reconciled", agents=len(fixed))
        return fixed
