"""Shared test fixtures for the backlog board tests."""

import sys
from pathlib import Path

import pytest

# Ensure the project root (pkg/, backlog_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from backlog_server import create_app
from pkg.backlog.config import Config
from pkg.backlog.file_store import JsonFileStore
from pkg.backlog.store import SQLiteBacklogStore


@pytest.fixture(params=["file", "sqlite"])
def store(request, tmp_path):
    """Each contract test runs against both backends."""
    if request.param == "file":
        return JsonFileStore(str(tmp_path / "database.json"))
    return SQLiteBacklogStore(str(tmp_path / "backlog.db"))


@pytest.fixture
def app(store):
    app = create_app(store=store, config=Config())
    app.testing = True
    return app


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def make_project(http):
    """POST a project and return (project_id, headers)."""
    def _make(name="Board", secret="s3cret"):
        res = http.post("/api/projects", json={"name": name, "secretKey": secret})
        assert res.status_code == 201, res.get_json()
        return res.get_json()["project"]["id"], {"X-Project-Secret": secret}
    return _make
