"""Tests for the vote ledger and karma accumulator."""
import random
import threading

import pytest

from deepclaw import repository
from deepclaw.errors import NotFoundError, ValidationError


@pytest.fixture
def authors(services):
    x = pytest.register(services, "author-x")
    y = pytest.register(services, "voter-y")
    post = repository.create_post(services.db, agent_id=x["id"], content="hello agents")
    return x, y, post["id"]


def karma_of(services, agent_id):
    with services.db.connect() as conn:
        return conn.execute("SELECT karma FROM agents WHERE id = ?", (agent_id,)).fetchone()["karma"]


def score_of(services, post_id):
    return repository.get_post(services.db, post_id)["score"]


class TestApplyVote:
    def test_upvote_downvote_clear(self, services, authors):
        x, y, post_id = authors

        result = services.votes.apply_vote(y["id"], post_id, 1)
        assert (result.your_vote, result.score) == (1, 1)
        assert karma_of(services, x["id"]) == 1

        result = services.votes.apply_vote(y["id"], post_id, -1)
        assert result.score == -1
        assert result.karma_delta == -2
        assert karma_of(services, x["id"]) == -1

        result = services.votes.apply_vote(y["id"], post_id, 0)
        assert result.score == 0
        assert karma_of(services, x["id"]) == 0
        with services.db.connect() as conn:
            assert conn.execute("SELECT COUNT(*) AS n FROM votes").fetchone()["n"] == 0

    def test_repeat_vote_is_idempotent(self, services, authors):
        x, y, post_id = authors
        services.votes.apply_vote(y["id"], post_id, 1)
        result = services.votes.apply_vote(y["id"], post_id, 1)
        assert result.karma_delta == 0
        assert result.score == 1
        assert karma_of(services, x["id"]) == 1

    def test_clearing_without_vote_is_noop(self, services, authors):
        x, y, post_id = authors
        result = services.votes.apply_vote(y["id"], post_id, 0)
        assert result.score == 0
        assert karma_of(services, x["id"]) == 0

    def test_self_vote_moves_own_karma(self, services, authors):
        x, _, post_id = authors
        services.votes.apply_vote(x["id"], post_id, 1)
        assert karma_of(services, x["id"]) == 1

    def test_score_sums_all_voters(self, services, authors):
        x, y, post_id = authors
        z = pytest.register(services, "voter-z")
        services.votes.apply_vote(y["id"], post_id, 1)
        services.votes.apply_vote(z["id"], post_id, 1)
        assert score_of(services, post_id) == 2
        assert karma_of(services, x["id"]) == 2
        services.votes.apply_vote(z["id"], post_id, -1)
        assert score_of(services, post_id) == 0

    @pytest.mark.parametrize("value", [2, -2, 5, True])
    def test_invalid_value_rejected(self, services, authors, value):
        x, y, post_id = authors
        with pytest.raises(ValidationError):
            services.votes.apply_vote(y["id"], post_id, value)
        assert karma_of(services, x["id"]) == 0

    def test_unknown_post(self, services, authors):
        _, y, _ = authors
        with pytest.raises(NotFoundError):
            services.votes.apply_vote(y["id"], "missing", 1)

    def test_result_shape(self, services, authors):
        _, y, post_id = authors
        body = services.votes.apply_vote(y["id"], post_id, 1).to_dict()
        assert body == {"post_id": post_id, "your_vote": 1, "score": 1}


class TestKarmaAudit:
    def test_clean_ledger_has_no_drift(self, services, authors):
        _, y, post_id = authors
        services.votes.apply_vote(y["id"], post_id, 1)
        assert services.votes.audit_karma() == []

    def test_drift_detected_and_reconciled(self, services, authors):
        x, y, post_id = authors
        services.votes.apply_vote(y["id"], post_id, 1)
        pytest.set_karma(services.db, "author-x", 42)

        drifts = services.votes.audit_karma()
        assert len(drifts) == 1
        assert drifts[0].agent_id == x["id"]
        assert (drifts[0].stored, drifts[0].expected, drifts[0].drift) == (42, 1, 41)

        fixed = services.votes.reconcile_karma()
        assert [d.agent_id for d in fixed] == [x["id"]]
        assert karma_of(services, x["id"]) == 1
        assert services.votes.audit_karma() == []

    def test_random_vote_sequences_never_drift(self, services, authors):
        x, y, post_id = authors
        others = [pytest.register(services, f"voter-{i}") for i in range(3)]
        second = repository.create_post(services.db, agent_id=y["id"], content="second")["id"]
        rng = random.Random(7)
        for _ in range(60):
            voter = rng.choice(others + [x, y])
            services.votes.apply_vote(voter["id"], rng.choice([post_id, second]), rng.choice([-1, 0, 1]))
        assert services.votes.audit_karma() == []
        total = score_of(services, post_id) + score_of(services, second)
        assert karma_of(services, x["id"]) + karma_of(services, y["id"]) == total

    def test_concurrent_voters_keep_ledger_consistent(self, services, authors):
        x, _, post_id = authors
        voters = [pytest.register(services, f"crowd-{i}") for i in range(8)]

        def flip(voter):
            for value in (1, -1, 1):
                services.votes.apply_vote(voter["id"], post_id, value)

        threads = [threading.Thread(target=flip, args=(v,)) for v in voters]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert score_of(services, post_id) == 8
        assert karma_of(services, x["id"]) == 8
        assert services.votes.audit_karma() == []
