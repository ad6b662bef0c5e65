"""
Job watermark persistence.

Records the last successful completion time of each scheduled job.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from .db import DEFAULT_DB_PATH, from_db_timestamp, get_connection, to_db_timestamp


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WatermarkStore:
    """Repository for the job_watermark table.

    The clock is injectable so tests can pin "now".
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.db_path = db_path
        self.clock = clock

    def initialize_schema(self) -> None:
        """Create the job_watermark table if it doesn't exist."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_watermark (
                    job_name TEXT PRIMARY KEY,
                    last_run TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def get_last_run(self, job_name: str) -> Optional[datetime]:
        """Return the stored watermark for a job, or None if never run."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT last_run FROM job_watermark WHERE job_name = ?",
                (job_name,),
            ).fetchone()
            return from_db_timestamp(row[0]) if row else None
        finally:
            conn.close()

    def set_last_run(self, job_name: str, value: datetime) -> None:
        """Persist a watermark for a job, replacing any previous value."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO job_watermark (job_name, last_run) VALUES (?, ?)
                ON CONFLICT(job_name) DO UPDATE SET last_run = excluded.last_run
            """, (job_name, to_db_timestamp(value)))
            conn.commit()
        finally:
            conn.close()

    def get_job_date(
        self,
        job_name: str,
        fallback: datetime
    ) -> Tuple[datetime, Callable[[], datetime]]:
        """Read a job's watermark and return a setter that advances it.

        Args:
            job_name: Scheduled job name
            fallback: Value returned when the job has never completed

        Returns:
            (last_date, set_last_date). Calling set_last_date() persists the
            clock's current time and returns it.
        """
        last = self.get_last_run(job_name)

        def set_last_date() -> datetime:
            now = self.clock()
            self.set_last_run(job_name, now)
            return now

        return (last if last is not None else fallback), set_last_date

    def list_watermarks(self) -> Dict[str, datetime]:
        """Return all stored watermarks keyed by job name."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("SELECT job_name, last_run FROM job_watermark ORDER BY job_name")
            return {row[0]: from_db_timestamp(row[1]) for row in cursor.fetchall()}
        finally:
            conn.close()
