"""Database connection utilities."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from flowtrack.exceptions import DatabaseError


class Database:
    """Async SQLite database wrapper.

    A single connection is shared by every coroutine, so writes that commit
    are serialized through ``_write_lock``. Code running inside
    :meth:`transaction` must use the ``*_no_commit`` helpers.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        if self._connection is not None:
            return
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._init_schema()

    async def _init_schema(self) -> None:
        schema_path = Path(__file__).parent / "schema.sql"
        schema = schema_path.read_text(encoding="utf-8")
        await self._connection.executescript(schema)
        await self._connection.commit()

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise DatabaseError("Database is not connected")
        return self._connection

    async def execute_read(self, query: str, params=None):
        """Execute a read query and return all results."""
        async with self.connection.execute(query, params or []) as cursor:
            return await cursor.fetchall()

    async def execute_write(self, query: str, params=None) -> int:
        """Execute and commit a single write; returns the affected row count."""
        async with self._write_lock:
            try:
                async with self.connection.execute(query, params or []) as cursor:
                    rowcount = cursor.rowcount
                await self.connection.commit()
            except BaseException:
                await self.connection.rollback()
                raise
        return rowcount

    # =========================================================================
    # Transaction support for atomic multi-statement writes
    # =========================================================================

    @asynccontextmanager
    async def transaction(self):
        """Context manager for explicit transaction control.

        Usage:
            async with db.transaction():
                changed = await db.execute_write_no_commit(...)
                await db.executemany_no_commit(...)
            # Commits on exit; rolls back on any exception, cancellation included
        """
        async with self._write_lock:
            try:
                yield
                await self.connection.commit()
            except BaseException:
                await self.connection.rollback()
                raise

    async def execute_write_no_commit(self, query: str, params=None) -> int:
        """Execute write without immediate commit (use within transaction)."""
        async with self.connection.execute(query, params or []) as cursor:
            return cursor.rowcount

    async def executemany_no_commit(self, query: str, params: Iterable[Sequence]) -> None:
        """Execute many without immediate commit (use within transaction)."""
        await self.connection.executemany(query, params)

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None
