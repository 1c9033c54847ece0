"""
Base repository providing shared SQLite execution helpers.

Repositories receive a ``sqlite3.Connection`` opened and owned by the caller
(typically via ``get_connection()``), speak pydantic models rather than raw
rows, and keep all SQL explicit (no ORM).

``atomic()`` wraps a block in an immediate transaction at top level, or in a
SAVEPOINT when an outer transaction is already open (the block is then rolled
back on its own).
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from itertools import count
from typing import Any, Generator, Optional

logger = logging.getLogger(__name__)

_savepoint_ids = count(1)


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> sqlite3.Cursor:
        """Execute a single SQL statement with ``?`` or ``:name`` placeholders."""
        logger.debug("SQL: %s | params: %s", sql.strip(), params)
        return self.conn.execute(sql, params)

    def fetchone(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> Optional[sqlite3.Row]:
        """Execute a query and return the first row, or ``None``."""
        return self.execute(sql, params).fetchone()

    def fetchall(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> list[sqlite3.Row]:
        """Execute a query and return all rows."""
        return self.execute(sql, params).fetchall()

    @contextmanager
    def atomic(self) -> Generator[None, None, None]:
        """Run the enclosed block as one unit of work.

        At top level the block runs in a ``BEGIN IMMEDIATE`` transaction: the
        write lock is taken (waiting up to the busy timeout) before the first
        read, so every read inside the block sees the latest committed state
        and the block's writes can never hit a stale WAL snapshot. The
        transaction commits when the block finishes.

        Inside an enclosing transaction the block runs in a SAVEPOINT instead;
        writes made before the block survive its rollback.

        On exception the block is rolled back and the exception re-raised.
        """
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN IMMEDIATE;")
            try:
                yield
            except BaseException:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()
            return

        name = f"sp_{next(_savepoint_ids)}"
        self.conn.execute(f"SAVEPOINT {name};")
        try:
            yield
        except BaseException:
            self.conn.execute(f"ROLLBACK TO SAVEPOINT {name};")
            self.conn.execute(f"RELEASE SAVEPOINT {name};")
            raise
        else:
            self.conn.execute(f"RELEASE SAVEPOINT {name};")
