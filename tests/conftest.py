from __future__ import annotations

import os
import tempfile
from typing import Any, Callable

import pytest

# Settings are read at import time, so the test environment must be in place first.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="cyclops-uploads-"))

import mongomock  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from auth import create_access_token, hash_password  # noqa: E402
from database import create_document, get_db  # noqa: E402
from events import broker  # noqa: E402
from main import app  # noqa: E402
from ratelimit import verify_email_limiter  # noqa: E402


@pytest.fixture
def db():
    return mongomock.MongoClient(tz_aware=True)["cyclops_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    verify_email_limiter.reset()
    broker.clear()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db) -> Callable[..., dict[str, Any]]:
    """Insert a user directly and return its id, document and auth headers."""

    def _make(name: str = "Ada", email: str | None = None, password: str = "secret123", verified: bool = True):
        email = email or f"{name.lower()}@example.com"
        user = create_document(db, "user", {
            "name": name,
            "email": email,
            "password": hash_password(password),
            "is_verified": verified,
        })
        user_id = str(user["_id"])
        token = create_access_token(user_id)
        return {"id": user_id, "doc": user, "headers": {"Authorization": f"Bearer {token}"}}

    return _make


@pytest.fixture
def make_workspace(client) -> Callable[..., dict[str, Any]]:
    def _make(owner: dict[str, Any], title: str = "Roadmap", workspace_type: str = "Kanban") -> dict[str, Any]:
        resp = client.post(
            "/api/workspaces",
            data={"workspace_title": title, "workspace_type": workspace_type},
            headers=owner["headers"],
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _make
