"""Tests for the moderator registry and pin policy."""
import threading

import pytest

from deepclaw import repository
from deepclaw.errors import (
    AlreadyModeratorError,
    ForbiddenError,
    InsufficientKarmaError,
    InvalidStateError,
    LimitExceededError,
    NotFoundError,
)


@pytest.fixture
def community(services):
    owner = pytest.register(services, "owner")
    target = pytest.register(services, "target")
    outsider = pytest.register(services, "outsider")
    services.subclaws.create(owner["id"], "sandbox")
    return owner, target, outsider


def new_post(services, agent_id, subclaw="sandbox", content="post body"):
    return repository.create_post(services.db, agent_id=agent_id, content=content, subclaw=subclaw)["id"]


class TestModeratorRegistry:
    def test_non_owner_forbidden(self, services, community):
        _, target, outsider = community
        pytest.set_karma(services.db, "target", 10)
        with pytest.raises(ForbiddenError):
            services.moderation.add_moderator(outsider["id"], "sandbox", "target")

    def test_karma_threshold(self, services, community):
        owner, _, _ = community
        pytest.set_karma(services.db, "target", 4)
        with pytest.raises(InsufficientKarmaError) as exc:
            services.moderation.add_moderator(owner["id"], "sandbox", "target")
        assert exc.value.required == 5
        assert exc.value.actual == 4

        pytest.set_karma(services.db, "target", 5)
        result = services.moderation.add_moderator(owner["id"], "sandbox", "target")
        assert result["success"] is True
        assert [m["name"] for m in services.moderation.list_moderators("sandbox")] == ["target"]

    def test_already_moderator(self, services, community):
        owner, _, _ = community
        pytest.set_karma(services.db, "target", 5)
        services.moderation.add_moderator(owner["id"], "sandbox", "target")
        with pytest.raises(AlreadyModeratorError):
            services.moderation.add_moderator(owner["id"], "sandbox", "target")

    def test_unknown_subclaw_and_agent(self, services, community):
        owner, _, _ = community
        with pytest.raises(NotFoundError):
            services.moderation.add_moderator(owner["id"], "nowhere", "target")
        with pytest.raises(NotFoundError):
            services.moderation.add_moderator(owner["id"], "sandbox", "ghost")

    def test_forbidden_checked_before_target(self, services, community):
        _, _, outsider = community
        with pytest.raises(ForbiddenError):
            services.moderation.add_moderator(outsider["id"], "sandbox", "ghost")

    def test_remove_moderator(self, services, community):
        owner, target, _ = community
        pytest.set_karma(services.db, "target", 5)
        services.moderation.add_moderator(owner["id"], "sandbox", "target")

        result = services.moderation.remove_moderator(owner["id"], "sandbox", "target")
        assert result["success"] is True
        assert services.moderation.list_moderators("sandbox") == []
        with pytest.raises(NotFoundError):
            services.moderation.remove_moderator(owner["id"], "sandbox", "target")

    def test_karma_drop_keeps_moderator(self, services, community):
        owner, target, _ = community
        pytest.set_karma(services.db, "target", 5)
        services.moderation.add_moderator(owner["id"], "sandbox", "target")
        pytest.set_karma(services.db, "target", 0)
        post_id = new_post(services, owner["id"])
        assert services.moderation.pin_post(target["id"], post_id)["success"] is True

    def test_target_notified(self, services, community):
        owner, target, _ = community
        pytest.set_karma(services.db, "target", 5)
        services.moderation.add_moderator(owner["id"], "sandbox", "target")
        services.moderation.remove_moderator(owner["id"], "sandbox", "target")
        kinds = [n["type"] for n in services.notifications.list(target["id"])]
        assert kinds == ["moderator_removed", "moderator_added"]

    def test_failed_add_leaves_no_notification(self, services, community):
        owner, target, _ = community
        with pytest.raises(InsufficientKarmaError):
            services.moderation.add_moderator(owner["id"], "sandbox", "target")
        assert services.notifications.unread_count(target["id"]) == 0


class TestPinPolicy:
    def test_owner_pins_up_to_limit(self, services, community):
        owner, _, _ = community
        posts = [new_post(services, owner["id"], content=f"post {i}") for i in range(4)]
        for post_id in posts[:3]:
            assert services.moderation.pin_post(owner["id"], post_id)["message"] == "Post pinned"

        with pytest.raises(LimitExceededError):
            services.moderation.pin_post(owner["id"], posts[3])

        services.moderation.unpin_post(owner["id"], posts[0])
        services.moderation.pin_post(owner["id"], posts[3])
        pinned = [p["id"] for p in repository.feed(services.db, subclaw="sandbox")["posts"] if p["pinned"]]
        assert sorted(pinned) == sorted(posts[1:])

    def test_repin_is_noop(self, services, community):
        owner, _, _ = community
        posts = [new_post(services, owner["id"], content=f"post {i}") for i in range(3)]
        for post_id in posts:
            services.moderation.pin_post(owner["id"], post_id)
        # already pinned; does not count against the limit again
        assert services.moderation.pin_post(owner["id"], posts[0])["success"] is True

    def test_moderator_can_pin(self, services, community):
        owner, target, _ = community
        pytest.set_karma(services.db, "target", 5)
        services.moderation.add_moderator(owner["id"], "sandbox", "target")
        post_id = new_post(services, owner["id"])
        assert services.moderation.pin_post(target["id"], post_id)["success"] is True

    def test_outsider_cannot_pin(self, services, community):
        owner, _, outsider = community
        post_id = new_post(services, owner["id"])
        with pytest.raises(ForbiddenError):
            services.moderation.pin_post(outsider["id"], post_id)
        with pytest.raises(ForbiddenError):
            services.moderation.unpin_post(outsider["id"], post_id)

    def test_post_without_subclaw(self, services, community):
        owner, _, _ = community
        post_id = new_post(services, owner["id"], subclaw=None)
        with pytest.raises(InvalidStateError):
            services.moderation.pin_post(owner["id"], post_id)

    def test_unknown_post(self, services, community):
        owner, _, _ = community
        with pytest.raises(NotFoundError):
            services.moderation.pin_post(owner["id"], "missing")

    def test_limit_is_per_subclaw(self, services, community):
        owner, _, _ = community
        services.subclaws.create(owner["id"], "other")
        for i in range(3):
            services.moderation.pin_post(owner["id"], new_post(services, owner["id"], content=f"a{i}"))
        other = new_post(services, owner["id"], subclaw="other")
        assert services.moderation.pin_post(owner["id"], other)["success"] is True

    def test_concurrent_pins_respect_limit(self, services, community):
        owner, _, _ = community
        posts = [new_post(services, owner["id"], content=f"race {i}") for i in range(6)]
        outcomes = []
        start = threading.Barrier(len(posts))

        def pin(post_id):
            start.wait()
            try:
                services.moderation.pin_post(owner["id"], post_id)
                outcomes.append("pinned")
            except LimitExceededError:
                outcomes.append("limit")

        threads = [threading.Thread(target=pin, args=(p,)) for p in posts]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["limit"] * 3 + ["pinned"] * 3
        with services.db.connect() as conn:
            pinned = conn.execute("SELECT COUNT(*) AS n FROM posts WHERE pinned = 1").fetchone()["n"]
        assert pinned == 3
