"""
Database connection management.

Provides SQLite connections shared by every store.
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

DEFAULT_DB_PATH = "creator_payout.db"

# Fixed-width UTC format so timestamps compare correctly as text
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.
    
    Args:
        db_path: Path to SQLite database file
        
    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def to_db_timestamp(value: datetime) -> str:
    """Serialize a datetime as a UTC timestamp string.

    Naive datetimes are assumed to already be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_db_timestamp(value: str) -> datetime:
    """Parse a timestamp written by to_db_timestamp into an aware UTC datetime."""
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
