"""Key-value store adapters: in-memory for tests, SQLite for the terminal shell."""

import logging
import os
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol

from dotenv import load_dotenv
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from .schema import SCHEMA

load_dotenv(override=True)

logger = logging.getLogger(__name__)

DB_PATH = Path(os.environ.get("OTAI_DB_PATH") or Path(__file__).parent / "otai.db")


class KeyValueStore(Protocol):
    """Synchronous string-keyed storage. Only single-key writes are atomic."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStore:
    """Dict-backed store."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


def get_connection(db_path: Path | None = None) -> sqlite3.Connection:
    """Get a database connection with row factory enabled."""
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: Path | None = None) -> None:
    """Initialize the database with schema."""
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


class SqliteStore:
    """Store backed by the ``kv_store`` table. Opens a connection per call."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = Path(db_path or DB_PATH)
        init_database(self.db_path)

    def get(self, key: str) -> str | None:
        conn = get_connection(self.db_path)
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        conn.close()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        conn = get_connection(self.db_path)
        conn.execute(
            """
            INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, datetime.now().isoformat()),
        )
        conn.commit()
        conn.close()

    def delete(self, key: str) -> None:
        conn = get_connection(self.db_path)
        conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        conn.commit()
        conn.close()


def read_blob(store: KeyValueStore, key: str, adapter: TypeAdapter, default=None):
    """Read and validate a JSON blob. Malformed or invalid data reads as absent."""
    raw = store.get(key)
    if raw is None:
        return default
    try:
        return adapter.validate_json(raw)
    except PydanticValidationError as e:
        logger.warning("Ignoring corrupted value under %s (%d errors)", key, e.error_count())
        return default


def write_blob(store: KeyValueStore, key: str, adapter: TypeAdapter, value) -> None:
    store.set(key, adapter.dump_json(value).decode("utf-8"))
