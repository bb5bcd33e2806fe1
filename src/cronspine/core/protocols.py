"""
Canonical protocol definitions for cronspine.

Manifesto:
    Protocols define contracts without inheritance. The monitor store,
    lock manager and CLI depend on the shape of a DB-API connection, not
    on ``sqlite3`` itself, so tests can hand in any connection that
    behaves the same way.

Tags:
    protocol, connection, database, cronspine, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for database operations.

    ``sqlite3.Connection`` satisfies it natively. ``execute`` returns a
    cursor exposing ``fetchone``/``fetchall``/``rowcount``.

    Examples:
        >>> cursor = conn.execute("SELECT version FROM monitors WHERE slug = ?", ("nightly",))
        >>> row = cursor.fetchone()
    """

    def execute(self, sql: str, params: Any = ()) -> Any:
        """Execute SQL statement with optional parameters. SYNC."""
        ...

    def executescript(self, sql: str) -> Any:
        """Execute a multi-statement script (schema DDL). SYNC."""
        ...

    def commit(self) -> None:
        """Commit current transaction. SYNC."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction. SYNC."""
        ...

    def close(self) -> None:
        """Release the connection. SYNC."""
        ...
