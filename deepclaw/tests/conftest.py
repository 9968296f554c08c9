"""
DeepClaw Test Configuration - shared fixtures.

Every test gets its own SQLite file under tmp_path; the app is built with the
factory so no module reloading is needed.
"""
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from deepclaw.api_server import Services, create_app
from deepclaw.db import Database
from deepclaw.rate_limit import RateLimiter


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "deepclaw_test.db")


@pytest.fixture
def services(db):
    return Services.build(db)


@pytest.fixture
def api_client(tmp_path):
    """Fresh API app with an isolated database and a limiter that won't trip."""
    app = create_app(tmp_path / "deepclaw_api.db", rate_limiter=RateLimiter(requests_per_minute=10_000))
    client = TestClient(app)
    return client, app.state.services


def set_karma(db, name, karma):
    with db.connect() as conn:
        conn.execute("UPDATE agents SET karma = ? WHERE name = ?", (karma, name))


def register(services, name, **kwargs):
    """Helper: register an agent and return its id and API key."""
    result = services.agents.register(name, **kwargs)
    return {"id": result["id"], "name": name, "api_key": result["api_key"]}


def register_via_api(client, name):
    resp = client.post("/agents", json={"name": name})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    return {"id": data["id"], "name": name, "headers": {"X-API-Key": data["api_key"]}}


# Export helpers
pytest.register = register
pytest.register_via_api = register_via_api
pytest.set_karma = set_karma
