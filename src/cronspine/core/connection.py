"""Connection factory - create database connections from URL strings.

This is the **single entry point** for opening the monitor store database.

Supported URL schemes
---------------------
==================  ==========================================  ============
Scheme              Example                                     Backend
==================  ==========================================  ============
``memory``          ``memory`` or ``:memory:`` or ``None``       SQLite RAM
``sqlite``          ``sqlite:///path/to/file.db``                SQLite file
``(file path)``     ``./data/monitors.db``                       SQLite file
==================  ==========================================  ============

Usage
-----
::

    from cronspine.core.connection import create_connection

    conn, info = create_connection("sqlite:///monitors.db", init_schema=True)
    print(info)
    # ConnectionInfo(backend='sqlite', persistent=True, path='/abs/monitors.db')

Design
------
Connections are opened with ``check_same_thread=False`` because the sweep
service creates its connection on the main thread and uses it from the
timing backend's thread; each connection is still used by one thread at a
time. The busy timeout bounds how long a writer waits for SQLite's write
lock before the store reports ``StoreUnavailableError``.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from importlib import resources
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_FILES = ("01_monitors.sql", "02_locks.sql")


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about a database connection."""

    backend: str
    """Backend identifier (always ``"sqlite"`` today)."""

    persistent: bool
    """Whether data survives process exit."""

    url: str
    """The original URL or path used to create the connection."""

    resolved_path: str | None = None
    """For file-based SQLite, the resolved absolute path."""

    def __repr__(self) -> str:
        parts = [f"backend={self.backend!r}", f"persistent={self.persistent}"]
        if self.resolved_path:
            parts.append(f"path={self.resolved_path!r}")
        else:
            parts.append(f"url={self.url!r}")
        return f"ConnectionInfo({', '.join(parts)})"


def _parse_url(db: str | None) -> tuple[str, str]:
    """Parse a database URL into ``(scheme, target)``."""
    if db is None or db in ("", "memory", ":memory:"):
        return "memory", ":memory:"

    for prefix in ("sqlite:///", "sqlite://"):
        if db.startswith(prefix):
            path = db[len(prefix):]
            if not path or path == ":memory:":
                return "memory", ":memory:"
            return "sqlite", path

    if "://" in db:
        raise ValueError(f"Unsupported database URL: {db!r} (only SQLite is supported)")

    return "file", db


def load_schema_sql() -> str:
    """Return the packaged DDL scripts concatenated in order."""
    package = resources.files("cronspine.core") / "schema"
    return "\n".join((package / name).read_text(encoding="utf-8") for name in SCHEMA_FILES)


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply the schema (idempotent ``CREATE TABLE IF NOT EXISTS``)."""
    conn.executescript(load_schema_sql())
    conn.commit()


def create_connection(
    db: str | None = None,
    *,
    init_schema: bool = False,
    busy_timeout: float = 5.0,
) -> tuple[sqlite3.Connection, ConnectionInfo]:
    """Create a database connection from a URL, path, or keyword.

    Parameters
    ----------
    db:
        ``None``/``"memory"`` for in-memory SQLite, ``"sqlite:///file.db"``
        or a bare path for file-based SQLite.
    init_schema:
        If ``True``, apply the monitor store schema.
    busy_timeout:
        Seconds a writer waits on a locked database before failing.

    Returns
    -------
    tuple[sqlite3.Connection, ConnectionInfo]
    """
    scheme, target = _parse_url(db)

    if scheme == "memory":
        conn = sqlite3.connect(":memory:", timeout=busy_timeout, check_same_thread=False)
        info = ConnectionInfo(backend="sqlite", persistent=False, url=":memory:")
    else:
        path = Path(target).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        resolved = str(path.resolve())
        conn = sqlite3.connect(resolved, timeout=busy_timeout, check_same_thread=False)
        info = ConnectionInfo(
            backend="sqlite",
            persistent=True,
            url=db or target,
            resolved_path=resolved,
        )

    if init_schema:
        apply_schema(conn)
        logger.debug(f"Schema initialized for {info!r}")

    return conn, info
