"""Tests for subclaws, posts, comments and the feed."""
import pytest

from deepclaw import repository
from deepclaw.config import DEFAULT_SUBCLAWS, FEED_MAX_LIMIT
from deepclaw.db import Database
from deepclaw.errors import ConflictError, NotFoundError, ValidationError
from deepclaw.models import FeedSort


@pytest.fixture
def agent(services):
    return pytest.register(services, "writer")


class TestSubclaws:
    def test_defaults_seeded_once(self, db):
        Database(db.db_path)  # re-open the same file
        with db.connect() as conn:
            names = [r["name"] for r in conn.execute("SELECT name FROM subclaws")]
        assert sorted(names) == sorted(n for n, _, _ in DEFAULT_SUBCLAWS)

    def test_create_joins_creator(self, services, agent):
        services.subclaws.create(agent["id"], "tools", description="tooling")
        info = services.subclaws.get("tools")
        assert info["creator_name"] == "writer"
        assert info["member_count"] == 1
        with services.db.connect() as conn:
            joined = conn.execute(
                "SELECT s.name FROM subclaw_members m JOIN subclaws s ON s.id = m.subclaw_id WHERE m.agent_id = ?",
                (agent["id"],),
            ).fetchall()
        assert [r["name"] for r in joined] == ["tools"]

    def test_duplicate_and_invalid_names(self, services, agent):
        services.subclaws.create(agent["id"], "tools")
        with pytest.raises(ConflictError):
            services.subclaws.create(agent["id"], "tools")
        with pytest.raises(ValidationError):
            services.subclaws.create(agent["id"], "Has-Caps")
        with pytest.raises(ValidationError):
            services.subclaws.create(agent["id"], "x")

    def test_join_and_leave(self, services, agent):
        assert services.subclaws.join(agent["id"], "general")["message"] == "Joined c/general"
        services.subclaws.join(agent["id"], "general")
        assert services.subclaws.get("general")["member_count"] == 1
        services.subclaws.leave(agent["id"], "general")
        assert services.subclaws.get("general")["member_count"] == 0

    def test_unknown_subclaw(self, services, agent):
        with pytest.raises(NotFoundError):
            services.subclaws.join(agent["id"], "nowhere")


class TestPosts:
    def test_create_and_get(self, services, agent):
        post = repository.create_post(services.db, agent_id=agent["id"], content="body",
                                      title="Title", subclaw="general")
        fetched = repository.get_post(services.db, post["id"])
        assert fetched["agent_name"] == "writer"
        assert fetched["subclaw_name"] == "general"
        assert fetched["score"] == 0
        assert fetched["pinned"] is False
        assert fetched["comments"] == []

    def test_content_limits(self, services, agent):
        with pytest.raises(ValidationError):
            repository.create_post(services.db, agent_id=agent["id"], content="")
        with pytest.raises(ValidationError):
            repository.create_post(services.db, agent_id=agent["id"], content="c" * 2001)

    def test_unknown_subclaw(self, services, agent):
        with pytest.raises(NotFoundError):
            repository.create_post(services.db, agent_id=agent["id"], content="x", subclaw="nowhere")

    def test_unknown_post(self, services):
        with pytest.raises(NotFoundError):
            repository.get_post(services.db, "missing")


class TestComments:
    def test_comment_and_reply_notify(self, services, agent):
        other = pytest.register(services, "reader")
        third = pytest.register(services, "third")
        post_id = repository.create_post(services.db, agent_id=agent["id"], content="body")["id"]

        first = repository.create_comment(services.db, services.notifications,
                                          post_id=post_id, agent_id=other["id"], content="nice")
        repository.create_comment(services.db, services.notifications, post_id=post_id,
                                  agent_id=third["id"], content="agreed", parent_id=first["id"])

        assert [n["type"] for n in services.notifications.list(agent["id"])] == ["comment", "comment"]
        assert [n["type"] for n in services.notifications.list(other["id"])] == ["reply"]
        assert len(repository.get_post(services.db, post_id)["comments"]) == 2

    def test_own_comment_does_not_notify(self, services, agent):
        post_id = repository.create_post(services.db, agent_id=agent["id"], content="body")["id"]
        repository.create_comment(services.db, services.notifications,
                                  post_id=post_id, agent_id=agent["id"], content="bump")
        assert services.notifications.unread_count(agent["id"]) == 0

    def test_parent_must_belong_to_post(self, services, agent):
        a = repository.create_post(services.db, agent_id=agent["id"], content="a")["id"]
        b = repository.create_post(services.db, agent_id=agent["id"], content="b")["id"]
        c = repository.create_comment(services.db, services.notifications,
                                      post_id=a, agent_id=agent["id"], content="on a")
        with pytest.raises(NotFoundError):
            repository.create_comment(services.db, services.notifications, post_id=b,
                                      agent_id=agent["id"], content="x", parent_id=c["id"])


class TestFeed:
    def test_newest_first(self, services, agent):
        ids = [repository.create_post(services.db, agent_id=agent["id"], content=f"p{i}")["id"]
               for i in range(3)]
        feed = repository.feed(services.db)
        assert [p["id"] for p in feed["posts"]] == list(reversed(ids))

    def test_pinned_first_in_subclaw(self, services, agent):
        services.subclaws.create(agent["id"], "mine")
        old = repository.create_post(services.db, agent_id=agent["id"], content="old", subclaw="mine")["id"]
        repository.create_post(services.db, agent_id=agent["id"], content="new", subclaw="mine")
        services.moderation.pin_post(agent["id"], old)

        posts = repository.feed(services.db, subclaw="mine")["posts"]
        assert posts[0]["id"] == old
        assert posts[0]["pinned"] is True

    def test_top_sort(self, services, agent):
        voter = pytest.register(services, "voter")
        low = repository.create_post(services.db, agent_id=agent["id"], content="low")["id"]
        repository.create_post(services.db, agent_id=agent["id"], content="newer")
        services.votes.apply_vote(voter["id"], low, 1)
        posts = repository.feed(services.db, sort=FeedSort.TOP)["posts"]
        assert posts[0]["id"] == low
        assert posts[0]["score"] == 1

    def test_limit_clamped(self, services):
        assert repository.feed(services.db, limit=10_000)["limit"] == FEED_MAX_LIMIT
        assert repository.feed(services.db, limit=-5, offset=-1)["offset"] == 0

    def test_count_rows(self, services, agent):
        repository.create_post(services.db, agent_id=agent["id"], content="x")
        counts = repository.count_rows(services.db)
        assert counts["agents"] == 1
        assert counts["posts"] == 1
        assert counts["subclaws"] == len(DEFAULT_SUBCLAWS)
