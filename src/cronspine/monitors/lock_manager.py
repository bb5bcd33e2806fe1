"""TTL lock manager for sweep leadership.

Manifesto:
    Duplicate sweeps are harmless (CAS makes the loser a no-op) but
    wasteful. Each sweeper instance takes a per-shard lock before a pass;
    the lock expires on its own so a crashed instance never blocks its
    shard for longer than the TTL. INSERT-or-ignore gives O(1) conflict
    detection.

Tags:
    cronspine, sweep, distributed-locks, TTL, concurrency

Doc-Types:
    api-reference


    Lock Flow::

        Instance A: DELETE expired → INSERT OR IGNORE → rowcount 1 → sweep
        Instance B: DELETE expired → INSERT OR IGNORE → rowcount 0 → skip
        Locks auto-expire after ttl_seconds.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from cronspine.core.protocols import Connection
from cronspine.monitors.store import to_db_time

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


class LockManager:
    """Database-backed TTL locks (``core_locks``).

    Example:
        >>> manager = LockManager(conn, instance_id="sweeper-1")
        >>> if manager.acquire("sweep:0", ttl_seconds=120):
        ...     try:
        ...         detector.sweep()
        ...     finally:
        ...         manager.release("sweep:0")
    """

    def __init__(
        self,
        conn: Connection,
        instance_id: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize lock manager.

        Args:
            conn: Database connection
            instance_id: Unique identifier for this sweeper instance.
                        Auto-generated if not provided.
            clock: Source of the current UTC time
        """
        self.conn = conn
        self.instance_id = instance_id or str(uuid4())
        self.clock = clock

    def acquire(self, lock_id: str, ttl_seconds: int = 300) -> bool:
        """Acquire (or refresh) an exclusive lock.

        Returns:
            True if this instance holds the lock afterwards
        """
        now = self.clock()
        expires = now + timedelta(seconds=ttl_seconds)

        try:
            self.conn.execute(
                "DELETE FROM core_locks WHERE lock_id = ? AND expires_at < ?",
                (lock_id, to_db_time(now)),
            )
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO core_locks (lock_id, locked_by, locked_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (lock_id, self.instance_id, to_db_time(now), to_db_time(expires)),
            )
            self.conn.commit()

            if cursor.rowcount > 0:
                logger.debug(f"Acquired lock {lock_id}")
                return True

            # Already ours: extend the expiry
            cursor = self.conn.execute(
                "UPDATE core_locks SET expires_at = ? WHERE lock_id = ? AND locked_by = ?",
                (to_db_time(expires), lock_id, self.instance_id),
            )
            self.conn.commit()
            if cursor.rowcount > 0:
                logger.debug(f"Refreshed lock {lock_id}")
                return True

            logger.debug(f"Lock {lock_id} held by another instance")
            return False

        except sqlite3.Error as e:
            self.conn.rollback()
            logger.error(f"Lock acquire failed for {lock_id}: {e}")
            return False

    def release(self, lock_id: str) -> bool:
        """Release a lock held by this instance.

        Returns:
            True if released, False if not held
        """
        try:
            cursor = self.conn.execute(
                "DELETE FROM core_locks WHERE lock_id = ? AND locked_by = ?",
                (lock_id, self.instance_id),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            logger.error(f"Lock release failed for {lock_id}: {e}")
            return False

        if cursor.rowcount > 0:
            logger.debug(f"Released lock {lock_id}")
            return True
        return False

    def get_lock_holder(self, lock_id: str) -> str | None:
        """Instance currently holding an unexpired lock, if any."""
        cursor = self.conn.execute(
            "SELECT locked_by FROM core_locks WHERE lock_id = ? AND expires_at > ?",
            (lock_id, to_db_time(self.clock())),
        )
        row = cursor.fetchone()
        return row[0] if row else None

    def is_locked(self, lock_id: str) -> bool:
        return self.get_lock_holder(lock_id) is not None

    def cleanup_expired_locks(self) -> int:
        """Remove all expired locks. Returns the number removed."""
        cursor = self.conn.execute(
            "DELETE FROM core_locks WHERE expires_at < ?",
            (to_db_time(self.clock()),),
        )
        self.conn.commit()

        count = cursor.rowcount
        if count > 0:
            logger.info(f"Cleaned up {count} expired locks")
        return count

    def list_active_locks(self) -> list[dict]:
        cursor = self.conn.execute(
            """
            SELECT lock_id, locked_by, locked_at, expires_at
            FROM core_locks
            WHERE expires_at > ?
            ORDER BY locked_at
            """,
            (to_db_time(self.clock()),),
        )
        return [
            {
                "lock_id": row[0],
                "locked_by": row[1],
                "locked_at": row[2],
                "expires_at": row[3],
            }
            for row in cursor.fetchall()
        ]
