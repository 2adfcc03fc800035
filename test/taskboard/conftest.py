"""
Shared fixtures for the taskboard test suite.

Provides isolated SQLite databases, a FastAPI TestClient wired to them,
authenticated users, and client-core applications over local or remote
storage.
"""

import os
import random
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from taskboard.api import create_app
from taskboard.application import BoardApplication
from taskboard.config import Settings
from taskboard.context import AppContext, ScriptedPrompter, Session
from taskboard.database import TaskDatabase
from taskboard.remote import RemoteStorage
from taskboard.storage import KeyValueFile, LocalStorage


@pytest.fixture
def db(tmp_path):
    """Temporary database, closed after the test."""
    database = TaskDatabase(str(tmp_path / "taskboard.db"))
    yield database
    database.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_path=str(tmp_path / "taskboard.db"),
        state_path=str(tmp_path / "state.json"),
        api_url="http://testserver/api",
    )


@pytest.fixture
def api_app(settings, db):
    return create_app(settings, database=db)


@pytest.fixture
def client(api_app):
    """TestClient rooted at the server; paths include the /api prefix."""
    return TestClient(api_app)


@pytest.fixture
def api_client(api_app):
    """TestClient rooted at /api, the shape RemoteStorage expects."""
    return TestClient(api_app, base_url="http://testserver/api")


def register_user(client, username="alice", email=None, password="secret123"):
    """Register through the API and return (token, headers)."""
    response = client.post("/api/auth/register", json={
        "username": username,
        "email": email or f"{username}@example.com",
        "password": password,
    })
    assert response.status_code == 201, response.text
    token = response.json()["token"]
    return token, {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth(client):
    """(token, headers) for a freshly registered user."""
    return register_user(client)


@pytest.fixture
def kv(tmp_path):
    return KeyValueFile(tmp_path / "state.json")


@pytest.fixture
def prompter():
    return ScriptedPrompter(answer=True)


@pytest.fixture
def local_app(kv, prompter):
    """BoardApplication over LocalStorage with a seeded RNG."""
    context = AppContext(storage=LocalStorage(kv), prompter=prompter, session=Session(kv))
    app = BoardApplication(context, rng=random.Random(7))
    app.load()
    yield app
    app.close()


@pytest.fixture
def remote_storage(api_client, auth):
    token, _ = auth
    storage = RemoteStorage(token=token, client=api_client)
    yield storage
    storage.close()


@pytest.fixture
def remote_app(remote_storage, prompter, kv):
    context = AppContext(storage=remote_storage, prompter=prompter, session=Session(kv))
    app = BoardApplication(context, rng=random.Random(7))
    app.load()
    return app
