"""
Shared pytest fixtures for backend tests.
Each test gets its own temp-file SQLite database.
"""
import pytest
import sqlite3
from dataclasses import fields
import sys
import os

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from resolver import MutationCallbacks


@pytest.fixture
def test_db(monkeypatch, tmp_path):
    """
    Create an isolated test database for each test.
    Uses a temp file (not :memory:) because database.py opens new connections per operation.
    """
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database, "DATABASE_PATH", db_path)
    monkeypatch.setattr(database, "init_db", lambda: None)

    # Create tables directly (skip alembic for tests)
    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE entities (
            id TEXT PRIMARY KEY,
            kind TEXT NOT NULL,
            data TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
    """)
    conn.commit()
    conn.close()

    yield db_path


class RecordingCallbacks:
    """Collects every callback invocation as (name, argument) pairs."""

    def __init__(self):
        self.calls = []

    def named(self, name):
        return [arg for call, arg in self.calls if call == name]

    def as_callbacks(self) -> MutationCallbacks:
        def record(name):
            def callback(*args):
                self.calls.append((name, args[0] if args else None))
            return callback

        return MutationCallbacks(**{
            field.name: record(field.name) for field in fields(MutationCallbacks)
        })


@pytest.fixture
def recorder():
    return RecordingCallbacks()


class FakeGateway:
    """Stands in for ModelGateway: returns queued replies or raises queued errors."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    async def complete(self, system_prompt, history):
        self.calls.append((system_prompt, list(history)))
        reply = self.replies.pop(0) if self.replies else "ok"
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def app_client(test_db, fake_gateway, monkeypatch):
    """
    Create a test client for the FastAPI app.
    Swaps in the fake gateway and skips alembic migrations.
    """
    from fastapi.testclient import TestClient
    import main

    monkeypatch.setattr(main, "gateway", fake_gateway)
    # Tables already created by test_db fixture
    monkeypatch.setattr(main, "init_db", lambda: None)

    with TestClient(main.app) as client:
        yield client
