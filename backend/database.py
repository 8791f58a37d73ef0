import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from pydantic import ValidationError

import config
from models import ChatMessage, EntitySnapshot

logger = logging.getLogger(__name__)

DATABASE_PATH = config.DATABASE_PATH

ENTITY_KINDS = ("tasks", "events", "notes", "goals", "projects")


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()

def init_db():
    """Initialize database by running Alembic migrations."""
    import subprocess
    import os

    # Run alembic upgrade from the backend directory
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=backend_dir,
        check=True
    )


# Key-value store
def kv_get(key: str) -> Optional[str]:
    with get_db() as conn:
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

def kv_set(key: str, value: str):
    now = datetime.now().isoformat()
    with get_db() as conn:
        conn.execute(
            """INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
            (key, value, now)
        )
        conn.commit()

def kv_delete(key: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        conn.commit()
        return cursor.rowcount > 0


# Chat history: the whole transcript as one JSON array under a fixed key
def load_chat_history(key: str = config.CHAT_HISTORY_KEY) -> list[ChatMessage]:
    """Stored transcript, or an empty one if nothing usable is stored."""
    raw = kv_get(key)
    if raw is None:
        return []
    try:
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"expected a list, got {type(data).__name__}")
        return [ChatMessage.model_validate(item) for item in data]
    except (ValueError, ValidationError) as e:
        # json.JSONDecodeError is a ValueError too
        logger.warning("Discarding unreadable chat history under %r: %s", key, e)
        return []

def save_chat_history(messages: list[ChatMessage], key: str = config.CHAT_HISTORY_KEY):
    kv_set(key, json.dumps([m.model_dump() for m in messages]))

def clear_chat_history(key: str = config.CHAT_HISTORY_KEY):
    kv_delete(key)

class ChatHistoryStore:
    """Transcript persistence for AssistantSession, bound to one key."""

    def __init__(self, key: str = config.CHAT_HISTORY_KEY):
        self.key = key

    def load(self) -> list[ChatMessage]:
        return load_chat_history(self.key)

    def save(self, messages: list[ChatMessage]):
        save_chat_history(messages, self.key)

    def clear(self):
        clear_chat_history(self.key)


# Entity store: each entity is a JSON document tagged with its kind
def _check_kind(kind: str):
    if kind not in ENTITY_KINDS:
        raise ValueError(f"Unknown entity kind: {kind}")

def list_entities(kind: str) -> list[dict]:
    _check_kind(kind)
    with get_db() as conn:
        rows = conn.execute(
            "SELECT data FROM entities WHERE kind = ? ORDER BY rowid", (kind,)
        ).fetchall()
        return [json.loads(row["data"]) for row in rows]

def get_entity(kind: str, entity_id: str) -> Optional[dict]:
    _check_kind(kind)
    with get_db() as conn:
        row = conn.execute(
            "SELECT data FROM entities WHERE kind = ? AND id = ?", (kind, entity_id)
        ).fetchone()
        return json.loads(row["data"]) if row else None

def get_snapshot() -> EntitySnapshot:
    return EntitySnapshot(**{kind: list_entities(kind) for kind in ENTITY_KINDS})

def create_entity(kind: str, record: dict) -> dict:
    """Insert a record that already carries its id."""
    _check_kind(kind)
    now = datetime.now().isoformat()
    with get_db() as conn:
        conn.execute(
            "INSERT INTO entities (id, kind, data, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (record["id"], kind, json.dumps(record), now, now)
        )
        conn.commit()
    return record

def update_entity(kind: str, record: dict) -> Optional[dict]:
    """Replace the stored document for record["id"]. Returns None if it doesn't exist."""
    _check_kind(kind)
    now = datetime.now().isoformat()
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE entities SET data = ?, updated_at = ? WHERE kind = ? AND id = ?",
            (json.dumps(record), now, kind, record["id"])
        )
        conn.commit()
        return record if cursor.rowcount > 0 else None

def delete_entity(kind: str, entity_id: str) -> bool:
    _check_kind(kind)
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM entities WHERE kind = ? AND id = ?", (kind, entity_id))
        conn.commit()
        return cursor.rowcount > 0

def delete_all_entities(kind: str) -> int:
    _check_kind(kind)
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM entities WHERE kind = ?", (kind,))
        conn.commit()
        return cursor.rowcount

def delete_completed_tasks() -> int:
    completed = [task["id"] for task in list_entities("tasks") if task.get("completed")]
    for task_id in completed:
        delete_entity("tasks", task_id)
    return len(completed)
