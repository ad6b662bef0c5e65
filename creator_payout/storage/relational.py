"""
Relational resource catalog.

Maps resources to their owning creator and catalog type.
"""

import json
from typing import Dict, Iterable, List, Sequence, Tuple

from .db import DEFAULT_DB_PATH, get_connection

# Keeps IN (...) parameter lists under SQLite's variable limit
QUERY_CHUNK_SIZE = 500


class ResourceRepository:
    """Repository over the `resource` table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def initialize_schema(self) -> None:
        """Create the resource table if it doesn't exist."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS resource (
                    id INTEGER PRIMARY KEY,
                    owner_id INTEGER NOT NULL,
                    type TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_resource_owner_id
                ON resource (owner_id)
            """)
            conn.commit()
        finally:
            conn.close()

    def upsert_resources(self, rows: Iterable[Tuple[int, int, str]]) -> None:
        """Insert or update (id, owner_id, type) rows."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.executemany("""
                INSERT INTO resource (id, owner_id, type) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET owner_id = excluded.owner_id, type = excluded.type
            """, list(rows))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def fetch_resource_types(self, resource_ids: Iterable[int]) -> Dict[int, str]:
        """Look up the catalog type of each known resource.

        Unknown ids are absent from the result.
        """
        ids = sorted(set(resource_ids))
        types: Dict[int, str] = {}
        if not ids:
            return types

        conn = get_connection(self.db_path)
        try:
            for start in range(0, len(ids), QUERY_CHUNK_SIZE):
                chunk = ids[start:start + QUERY_CHUNK_SIZE]
                placeholders = ", ".join("?" for _ in chunk)
                cursor = conn.execute(
                    f"SELECT id, type FROM resource WHERE id IN ({placeholders})",
                    chunk,
                )
                types.update({row[0]: row[1] for row in cursor.fetchall()})
            return types
        finally:
            conn.close()

    def fetch_owned_resources(self, resource_ids: Sequence[int]) -> List[Tuple[int, List[int]]]:
        """Group the given resources by owning creator in a single query.

        Callers bound the size of `resource_ids`; see core.ownership. The ids
        are bound as one JSON array, so the chunk size is not limited by
        SQLite's bound-variable limit.

        Args:
            resource_ids: Resource ids to look up

        Returns:
            List of (creator_id, resource_ids) pairs ordered by creator id
        """
        if not resource_ids:
            return []

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT owner_id, group_concat(id)
                FROM resource
                WHERE id IN (SELECT value FROM json_each(?))
                GROUP BY owner_id
                ORDER BY owner_id
            """, (json.dumps(list(resource_ids)),))
            return [
                (row[0], sorted(int(value) for value in row[1].split(",")))
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()
