"""SQLite database operations for sync attempt tracking.

NetSuite is the source of truth for whether an order is synced; this
database only keeps the history of attempts so failures and their reasons
survive between runs. It can be deleted at any time.
"""

import sqlite3
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List
from contextlib import contextmanager

from .models import SyncAttempt, SyncOutcome, SyncResult, SyncRunEntry

logger = logging.getLogger(__name__)


class Database:
    """SQLite database manager for sync history."""

    SCHEMA = """
    -- One row per order sync attempt
    CREATE TABLE IF NOT EXISTS sync_attempts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id TEXT NOT NULL,
        outcome TEXT NOT NULL,
        netsuite_id INTEGER,
        tran_id TEXT,
        error_kind TEXT,
        error_message TEXT,
        attempted_at TIMESTAMP NOT NULL
    );

    -- Index for latest-attempt lookups per order
    CREATE INDEX IF NOT EXISTS idx_attempts_order
    ON sync_attempts(order_id, id DESC);

    -- Track bulk sync runs for auditing
    CREATE TABLE IF NOT EXISTS sync_runs (
        run_id TEXT PRIMARY KEY,
        started_at TIMESTAMP NOT NULL,
        completed_at TIMESTAMP,
        status TEXT NOT NULL,
        requested INTEGER DEFAULT 0,
        succeeded INTEGER DEFAULT 0,
        failed INTEGER DEFAULT 0
    );

    -- Index for efficient history queries
    CREATE INDEX IF NOT EXISTS idx_runs_started_at
    ON sync_runs(started_at DESC);
    """

    def __init__(self, db_path: Path):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._init_schema()

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _init_schema(self) -> None:
        """Initialize database schema if not exists."""
        with self._get_connection() as conn:
            conn.executescript(self.SCHEMA)
            logger.info(f"Database initialized at {self.db_path}")

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(
            self.db_path,
            timeout=30.0  # Wait up to 30 seconds for locks to clear
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _row_to_attempt(row: sqlite3.Row) -> SyncAttempt:
        return SyncAttempt(
            id=row["id"],
            order_id=row["order_id"],
            outcome=SyncOutcome(row["outcome"]),
            netsuite_id=row["netsuite_id"],
            tran_id=row["tran_id"],
            error_kind=row["error_kind"],
            error_message=row["error_message"],
            attempted_at=row["attempted_at"],
        )

    # =========================================================================
    # SYNC ATTEMPTS
    # =========================================================================

    def record_attempt(self, result: SyncResult) -> None:
        """Record the outcome of one order sync.

        Args:
            result: SyncResult to save
        """
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_attempts
                    (order_id, outcome, netsuite_id, tran_id, error_kind, error_message, attempted_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.order_id,
                    result.outcome.value,
                    result.netsuite_id,
                    result.tran_id,
                    result.error_kind.value if result.error_kind else None,
                    result.error,
                    datetime.utcnow(),
                )
            )
            logger.debug(f"Recorded {result.outcome.value} attempt for order {result.order_id}")

    def get_attempts(self, order_id: str, limit: int = 10) -> List[SyncAttempt]:
        """Get recent attempts for an order, newest first.

        Args:
            order_id: 3DCart order ID
            limit: Maximum number of attempts to return

        Returns:
            List of SyncAttempt objects
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM sync_attempts WHERE order_id = ? ORDER BY id DESC LIMIT ?",
                (order_id, limit)
            )
            return [self._row_to_attempt(row) for row in cursor.fetchall()]

    def get_last_errors(self, order_ids: Iterable[str]) -> Dict[str, str]:
        """Get the error of each order whose latest attempt failed.

        Args:
            order_ids: 3DCart order IDs

        Returns:
            Dict mapping order ID to its last error message
        """
        order_ids = list(order_ids)
        if not order_ids:
            return {}

        placeholders = ", ".join("?" for _ in order_ids)
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"""
                SELECT a.order_id, a.outcome, a.error_message
                FROM sync_attempts a
                JOIN (
                    SELECT order_id, MAX(id) AS last_id
                    FROM sync_attempts
                    WHERE order_id IN ({placeholders})
                    GROUP BY order_id
                ) latest ON a.id = latest.last_id
                """,
                order_ids
            )
            return {
                row["order_id"]: row["error_message"]
                for row in cursor.fetchall()
                if row["outcome"] == SyncOutcome.FAILED.value and row["error_message"]
            }

    def get_failed_order_ids(self) -> List[str]:
        """Get orders whose most recent attempt failed.

        Returns:
            List of 3DCart order IDs, most recently failed first
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT a.order_id
                FROM sync_attempts a
                JOIN (
                    SELECT order_id, MAX(id) AS last_id
                    FROM sync_attempts
                    GROUP BY order_id
                ) latest ON a.id = latest.last_id
                WHERE a.outcome = ?
                ORDER BY a.id DESC
                """,
                (SyncOutcome.FAILED.value,)
            )
            return [row["order_id"] for row in cursor.fetchall()]

    # =========================================================================
    # SYNC RUNS
    # =========================================================================

    def start_sync_run(self, run_id: str, requested: int) -> None:
        """Record the start of a bulk sync run.

        Args:
            run_id: Unique ID for this sync run
            requested: Number of orders submitted to the run
        """
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_runs (run_id, started_at, status, requested, succeeded, failed)
                VALUES (?, ?, 'running', ?, 0, 0)
                """,
                (run_id, datetime.utcnow(), requested)
            )
            logger.info(f"Started sync run: {run_id}")

    def complete_sync_run(
        self,
        run_id: str,
        status: str,
        succeeded: int,
        failed: int,
    ) -> None:
        """Record completion of a bulk sync run.

        Args:
            run_id: Sync run ID
            status: Final status (success, partial, failed)
            succeeded: Orders synced or already synced
            failed: Orders that failed
        """
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE sync_runs
                SET completed_at = ?,
                    status = ?,
                    succeeded = ?,
                    failed = ?
                WHERE run_id = ?
                """,
                (datetime.utcnow(), status, succeeded, failed, run_id)
            )
            logger.info(f"Completed sync run: {run_id} with status {status}")

    def get_sync_history(self, limit: int = 10) -> List[SyncRunEntry]:
        """Get recent bulk sync runs.

        Args:
            limit: Maximum number of entries to return

        Returns:
            List of SyncRunEntry objects
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM sync_runs ORDER BY started_at DESC LIMIT ?",
                (limit,)
            )
            return [
                SyncRunEntry(
                    run_id=row["run_id"],
                    started_at=row["started_at"],
                    completed_at=row["completed_at"],
                    status=row["status"],
                    requested=row["requested"],
                    succeeded=row["succeeded"],
                    failed=row["failed"],
                )
                for row in cursor.fetchall()
            ]

    # =========================================================================
    # STATISTICS
    # =========================================================================

    def get_stats(self) -> dict:
        """Get sync statistics.

        Returns:
            Dictionary with attempt counts by outcome, failing orders and
            the last bulk run
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT outcome, COUNT(*) as count FROM sync_attempts GROUP BY outcome"
            )
            attempts = {row["outcome"]: row["count"] for row in cursor.fetchall()}

        history = self.get_sync_history(limit=1)
        last_run = history[0] if history else None

        return {
            "attempts": attempts,
            "failing_orders": len(self.get_failed_order_ids()),
            "last_run": last_run.completed_at or last_run.started_at if last_run else None,
            "last_run_status": last_run.status if last_run else None,
        }
