"""
SQLite persistence for the notification email log.

Append-only: rows are inserted, never updated or read back by the lookup
flow.  No ORM: just raw sqlite3.  Best-effort durability, no dedup.
"""

import logging
import os
import re
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from errors import ClientInputError

logger = logging.getLogger(__name__)

DB_PATH = os.environ.get("ELIGIBILITY_DB_PATH", "eligibility.db")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _get_db():
    """Get a sqlite3 connection with WAL mode for concurrent writers."""
    conn = sqlite3.connect(DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_db():
    """Create tables if they don't exist. Safe to call on every startup."""
    conn = _get_db()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS notifications (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            created_at  TEXT NOT NULL,
            tract       TEXT NOT NULL DEFAULT '',
            email       TEXT NOT NULL
        );
    """)
    conn.commit()
    conn.close()


def validate_email(email: Optional[str]) -> str:
    """Trimmed email, or ClientInputError when missing or malformed."""
    if email is not None and not isinstance(email, str):
        raise ClientInputError("Invalid email format")
    email = (email or "").strip()
    if not email:
        raise ClientInputError("Missing email")
    if not EMAIL_RE.match(email):
        raise ClientInputError("Invalid email format")
    return email


def record_notification(email: Optional[str], tract: Optional[str] = None) -> str:
    """
    Append a notification request.  Returns the ISO-8601 timestamp written.

    Validation happens before the connection is opened, so a rejected
    email never touches the table.
    """
    email = validate_email(email)
    tract = "" if tract is None else str(tract).strip()
    now = datetime.now(timezone.utc).isoformat()

    conn = _get_db()
    try:
        conn.execute(
            "INSERT INTO notifications (created_at, tract, email) VALUES (?, ?, ?)",
            (now, tract, email),
        )
        conn.commit()
    finally:
        conn.close()

    logger.info("Saved notification email %s*** for tract %s", email[:3], tract or "-")
    return now


def count_notifications() -> int:
    """Row count of the notification log (operational checks and tests)."""
    conn = _get_db()
    try:
        return conn.execute("SELECT COUNT(*) FROM notifications").fetchone()[0]
    finally:
        conn.close()
