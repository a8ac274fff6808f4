"""SQLite adapter with async access through aiosqlite."""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from typing import Any

import aiosqlite

from crud_connector.adapters.table import StatementResult, TableAdapter
from crud_connector.config import BackendKind
from crud_connector.errors import ConnectorError, ValidationError
from crud_connector.models import Record


class SqliteAdapter(TableAdapter):
    """SQLite adapter using one aiosqlite connection.

    aiosqlite funnels every call through a single worker thread, so the
    session cannot multiplex requests; the connector serializes operations.
    ``config.database_name`` is the database file path (``":memory:"`` for a
    private in-memory database).

    Example:
        ```python
        config = ConnectorConfig(database_name="todos.db", table_or_collection_name="todos",
                                 options={"create_table": True})
        adapter = SqliteAdapter(config, TODO_SCHEMA)
        await adapter.open()
        todo = await adapter.create({"title": "Buy milk"})
        ```
    """

    kind = BackendKind.SQLITE
    supports_concurrency = False

    id_column_ddl = "id INTEGER PRIMARY KEY AUTOINCREMENT"
    column_types = {str: "TEXT", int: "INTEGER", float: "REAL", bool: "INTEGER"}

    def placeholder(self, index: int) -> str:
        return "?"

    def quote(self, identifier: str) -> str:
        # A double-quoted name matching no column would be read as a string literal.
        return f"[{identifier}]"

    async def _connect(self) -> aiosqlite.Connection:
        """Open the SQLite database connection."""
        db = await aiosqlite.connect(
            self._config.database_name,
            timeout=self._config.operation_timeout,
            isolation_level=None,
        )
        try:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON")
            await db.execute("PRAGMA journal_mode = WAL")
            await db.execute("PRAGMA synchronous = NORMAL")
        except BaseException:
            await db.close()
            raise
        return db

    async def _disconnect(self, session: aiosqlite.Connection) -> None:
        await session.close()

    async def _fetch(self, sql: str, params: Sequence[Any]) -> list[Record]:
        async with self._session.execute(sql, tuple(params)) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def _execute(self, sql: str, params: Sequence[Any]) -> StatementResult:
        async with self._session.execute(sql, tuple(params)) as cursor:
            return StatementResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)

    def _classify_driver_error(self, exc: BaseException) -> ConnectorError | None:
        message = str(exc)
        if isinstance(exc, sqlite3.IntegrityError):
            return ValidationError(f"sqlite rejected the record: {message}", cause=exc)
        if isinstance(exc, OverflowError):
            return ValidationError(f"Value out of range for sqlite: {message}", cause=exc)
        if isinstance(exc, sqlite3.InterfaceError):
            return ValidationError(f"sqlite could not bind a value: {message}", cause=exc)
        if isinstance(exc, sqlite3.ProgrammingError):
            if "closed" in message.lower():
                return self._connection_error(exc, reason="lost")
            return ValidationError(f"sqlite could not bind a value: {message}", cause=exc)
        if isinstance(exc, sqlite3.OperationalError):
            lowered = message.lower()
            if "unable to open" in lowered:
                return self._connection_error(exc, reason="unreachable")
            if "no such column" in lowered or "has no column named" in lowered:
                return ValidationError(f"Unknown field: {message}", cause=exc)
            return None
        if isinstance(exc, ValueError) and "connection" in message.lower():
            # aiosqlite reports a stopped worker thread this way.
            return self._connection_error(exc, reason="lost")
        return None


__all__ = ["SqliteAdapter"]
