"""Tests for the patch submission queue."""
import pytest

from deepclaw.errors import NotFoundError, ValidationError

DIFF = "--- a/README.md\n+++ b/README.md\n@@ -1 +1 @@\n-old\n+new\n"


class TestPatchQueue:
    def test_submit_list_get(self, services):
        agent = pytest.register(services, "coder")
        patch = services.patches.submit(agent["id"], "Fix typo", DIFF, "small fix")
        assert patch["status"] == "submitted"

        listed = services.patches.list()
        assert [p["id"] for p in listed] == [patch["id"]]
        assert "diff" not in listed[0]
        assert listed[0]["agent_name"] == "coder"

        assert services.patches.get(patch["id"])["diff"] == DIFF

    def test_validation(self, services):
        agent = pytest.register(services, "coder")
        with pytest.raises(ValidationError):
            services.patches.submit(agent["id"], "", DIFF)
        with pytest.raises(ValidationError):
            services.patches.submit(agent["id"], "Empty", "")
        with pytest.raises(ValidationError):
            services.patches.submit(agent["id"], "Huge", "x" * 100_001)

    def test_unknown_patch(self, services):
        with pytest.raises(NotFoundError):
            services.patches.get("missing")

    def test_list_window_is_bounded(self, services):
        agent = pytest.register(services, "coder")
        for i in range(3):
            services.patches.submit(agent["id"], f"Patch {i}", DIFF)
        assert len(services.patches.list(limit=-1)) == 1
        assert len(services.patches.list(limit=10, offset=-5)) == 3
        assert len(services.patches.list(limit=0, offset=2)) == 1
