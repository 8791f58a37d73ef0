"""Initial schema - entity documents and key-value store

Revision ID: 001
Revises: None
Create Date: 2025-11-03

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    # Tasks, events, notes, goals and projects as JSON documents, in insertion order
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS entities (
            id TEXT PRIMARY KEY,
            kind TEXT NOT NULL,
            data TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """))
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_entities_kind ON entities (kind)"))

    # Durable key-value store (chat history lives under a fixed key)
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP TABLE IF EXISTS kv_store"))
    conn.execute(text("DROP INDEX IF EXISTS ix_entities_kind"))
    conn.execute(text("DROP TABLE IF EXISTS entities"))
