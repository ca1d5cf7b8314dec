"""
db.py
SQLite helpers + initialization (creates DB/tables, availability check).
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager

import config
from models import RECORD_FIELDS

DB_FILE = config.DATABASE_PATH

TABLE = "registrants"

# Typed columns; every other whitelisted attribute is stored as TEXT.
_COLUMN_TYPES = {
    "regno": "INTEGER NOT NULL UNIQUE",
    "yob": "INTEGER",
    "age": "INTEGER",
}


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def execute_rowcount(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.rowcount


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def ping() -> None:
    """Raise sqlite3.Error when the store cannot be reached."""
    fetch_one(f"SELECT 1 FROM {TABLE} LIMIT 1")


def _create_tables() -> None:
    attribute_columns = ",\n            ".join(
        f'"{spec.column}" {_COLUMN_TYPES.get(spec.column, "TEXT")}' for spec in RECORD_FIELDS
    )
    execute(
        f"""
        CREATE TABLE IF NOT EXISTS {TABLE} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            {attribute_columns},
            amount REAL NOT NULL,
            valid_days INTEGER NOT NULL,
            expiry_date TEXT NOT NULL,
            plan_status TEXT NOT NULL CHECK(lower(plan_status) IN ('active','expired')),
            is_deleted INTEGER NOT NULL DEFAULT 0 CHECK(is_deleted IN (0,1)),
            created_at TEXT NOT NULL,
            updated_at TEXT,
            created_by TEXT,
            modified_by TEXT,
            deleted_by TEXT
        )
        """
    )
    execute(f"CREATE INDEX IF NOT EXISTS idx_{TABLE}_expiry ON {TABLE}(expiry_date)")


def init_db() -> None:
    """
    Initialize the database.
    - Create the registrants table and indexes
    """
    _create_tables()
