"""
Ledger transaction sink.

Bulk inserts are idempotent on (external_transaction_id, to_account_id).
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .db import DEFAULT_DB_PATH, get_connection, to_db_timestamp
from .models import LedgerTransaction, TransactionType


class LedgerRepository:
    """Repository for the ledger_transaction table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def initialize_schema(self) -> None:
        """Create the ledger table if it doesn't exist.

        The unique constraint is what makes a rerun of an already-paid
        day harmless.
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ledger_transaction (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    from_account_id INTEGER NOT NULL,
                    to_account_id INTEGER NOT NULL,
                    amount INTEGER NOT NULL,
                    description TEXT NOT NULL,
                    type TEXT NOT NULL,
                    external_transaction_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (external_transaction_id, to_account_id)
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def create_transactions(self, transactions: List[LedgerTransaction]) -> int:
        """Insert a batch of transactions atomically, skipping duplicates.

        Args:
            transactions: Transactions to record

        Returns:
            Number of transactions newly written
        """
        if not transactions:
            return 0

        created_at = to_db_timestamp(datetime.now(timezone.utc))
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            before = conn.total_changes
            conn.executemany("""
                INSERT OR IGNORE INTO ledger_transaction
                (from_account_id, to_account_id, amount, description, type,
                 external_transaction_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                (
                    tx.from_account_id,
                    tx.to_account_id,
                    tx.amount,
                    tx.description,
                    tx.type.value,
                    tx.external_transaction_id,
                    created_at,
                )
                for tx in transactions
            ])
            inserted = conn.total_changes - before
            conn.commit()
            return inserted
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def fetch_transactions(
        self,
        external_transaction_id: Optional[str] = None
    ) -> List[LedgerTransaction]:
        """Fetch recorded transactions, optionally for one external id."""
        conn = get_connection(self.db_path)
        try:
            query = """
                SELECT from_account_id, to_account_id, amount, description, type,
                       external_transaction_id
                FROM ledger_transaction
            """
            params: Tuple = ()
            if external_transaction_id is not None:
                query += " WHERE external_transaction_id = ?"
                params = (external_transaction_id,)
            query += " ORDER BY id"

            cursor = conn.execute(query, params)
            return [
                LedgerTransaction(
                    from_account_id=row[0],
                    to_account_id=row[1],
                    amount=row[2],
                    description=row[3],
                    type=TransactionType(row[4]),
                    external_transaction_id=row[5],
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()
