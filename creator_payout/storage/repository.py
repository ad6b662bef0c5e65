"""
Repository pattern for analytics data access.

Holds raw usage events and the per-day resource compensation table.
"""

import json
from datetime import date, datetime
from typing import List

from .db import DEFAULT_DB_PATH, from_db_timestamp, get_connection, to_db_timestamp
from .models import CompensationRow, UsageEvent


class AnalyticsRepository:
    """Repository for usage events and aggregated compensation rows.

    Usage events are append-only. Compensation rows are replaced a whole
    day window at a time, so recomputing a window never duplicates rows.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize_schema(self) -> None:
        """Create the usage event and compensation tables if they don't exist."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage_event (
                    job_id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    job_cost REAL NOT NULL,
                    creator_tip REAL NOT NULL DEFAULT 0,
                    resources_used TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_usage_event_created_at
                ON usage_event (created_at)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS resource_compensation (
                    date TEXT NOT NULL,
                    resource_id INTEGER NOT NULL,
                    comp INTEGER NOT NULL,
                    tip INTEGER NOT NULL,
                    total INTEGER NOT NULL,
                    PRIMARY KEY (date, resource_id)
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def insert_usage_events(self, events: List[UsageEvent]) -> None:
        """Insert multiple usage events atomically.

        All events are inserted in a single transaction to ensure consistency.

        Args:
            events: List of usage events to record
        """
        if not events:
            return

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.executemany("""
                INSERT INTO usage_event
                (job_id, created_at, job_cost, creator_tip, resources_used)
                VALUES (?, ?, ?, ?, ?)
            """, [
                (
                    event.job_id,
                    to_db_timestamp(event.created_at),
                    event.job_cost,
                    event.creator_tip,
                    json.dumps(list(event.resources_used)),
                )
                for event in events
            ])
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def fetch_usage_events(self, start: datetime, end: datetime) -> List[UsageEvent]:
        """Fetch usage events created in [start, end), oldest first.

        Args:
            start: Inclusive lower bound
            end: Exclusive upper bound

        Returns:
            List of usage events ordered by creation time
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT job_id, created_at, job_cost, creator_tip, resources_used
                FROM usage_event
                WHERE created_at >= ? AND created_at < ?
                ORDER BY created_at, job_id
            """, (to_db_timestamp(start), to_db_timestamp(end)))
            return [
                UsageEvent(
                    job_id=row[0],
                    created_at=from_db_timestamp(row[1]),
                    job_cost=row[2],
                    creator_tip=row[3],
                    resources_used=tuple(json.loads(row[4])),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def replace_compensation_rows(
        self,
        start_day: date,
        end_day: date,
        rows: List[CompensationRow]
    ) -> int:
        """Replace all compensation rows dated in [start_day, end_day).

        Delete and insert run in one transaction, so readers see either the
        previous rows or the new ones.

        Args:
            start_day: First day of the window (inclusive)
            end_day: Day after the window (exclusive)
            rows: Rows to write, each dated inside the window

        Returns:
            Number of rows written

        Raises:
            ValueError: If a row is dated outside the window
        """
        for row in rows:
            if not start_day <= row.date < end_day:
                raise ValueError(
                    f"Row for resource {row.resource_id} dated {row.date} "
                    f"is outside window [{start_day}, {end_day})"
                )

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.execute("""
                DELETE FROM resource_compensation
                WHERE date >= ? AND date < ?
            """, (start_day.isoformat(), end_day.isoformat()))
            conn.executemany("""
                INSERT INTO resource_compensation (date, resource_id, comp, tip, total)
                VALUES (?, ?, ?, ?, ?)
            """, [
                (row.date.isoformat(), row.resource_id, row.comp, row.tip, row.total)
                for row in rows
            ])
            conn.commit()
            return len(rows)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def fetch_compensation_rows(self, day: date) -> List[CompensationRow]:
        """Fetch every compensation row for one day, highest total first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT date, resource_id, comp, tip, total
                FROM resource_compensation
                WHERE date = ?
                ORDER BY total DESC, resource_id
            """, (day.isoformat(),))
            return [
                CompensationRow(
                    date=date.fromisoformat(row[0]),
                    resource_id=row[1],
                    comp=row[2],
                    tip=row[3],
                    total=row[4],
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def compact(self) -> None:
        """Compact the database file after a window has been rewritten."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("VACUUM")
        finally:
            conn.close()
