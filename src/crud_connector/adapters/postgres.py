"""PostgreSQL adapter backed by an asyncpg connection pool.

asyncpg uses numbered ``$1, $2, ...`` placeholders. The pool hands each
operation its own connection, so concurrent callers are safe.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from crud_connector.adapters.table import StatementResult, TableAdapter
from crud_connector.config import BackendKind
from crud_connector.errors import ConnectorError, StoreConnectionError, ValidationError
from crud_connector.models import Record


def _rowcount(status: str) -> int:
    """Parse the affected-row count from a command tag such as ``UPDATE 3``."""
    last = status.rsplit(" ", 1)[-1] if status else ""
    return int(last) if last.isdigit() else 0


class PostgresAdapter(TableAdapter):
    """PostgreSQL adapter using ``asyncpg.create_pool``.

    Install the driver with ``pip install crud-connector[postgres]``.
    """

    kind = BackendKind.POSTGRES
    supports_concurrency = True

    id_column_ddl = "id SERIAL PRIMARY KEY"
    id_range = (-(2**31), 2**31 - 1)
    column_types = {str: "TEXT", int: "BIGINT", float: "DOUBLE PRECISION", bool: "BOOLEAN"}

    def placeholder(self, index: int) -> str:
        return f"${index}"

    def quote(self, identifier: str) -> str:
        return f'"{identifier}"'

    async def _connect(self) -> Any:
        try:
            import asyncpg
        except ImportError:
            raise StoreConnectionError(
                "asyncpg is required for the postgres backend. "
                "Install with: pip install crud-connector[postgres]",
                reason="driver_missing",
            ) from None

        config = self._config
        return await asyncpg.create_pool(
            host=config.host,
            port=config.port,
            user=config.username,
            password=config.password,
            database=config.database_name,
            ssl="require" if config.tls_required else None,
            min_size=1,
            max_size=config.max_concurrency,
            timeout=config.connect_timeout,
            command_timeout=config.operation_timeout,
        )

    async def _disconnect(self, session: Any) -> None:
        await session.close()

    async def _fetch(self, sql: str, params: Sequence[Any]) -> list[Record]:
        async with self._session.acquire() as conn:
            rows = await conn.fetch(sql, *params)
        return [dict(row) for row in rows]

    async def _execute(self, sql: str, params: Sequence[Any]) -> StatementResult:
        async with self._session.acquire() as conn:
            status = await conn.execute(sql, *params)
        return StatementResult(rowcount=_rowcount(status))

    async def _insert(self, record: Mapping[str, Any]) -> Record:
        sql, params = self.build_insert(record)
        async with self._session.acquire() as conn:
            row = await conn.fetchrow(f"{sql} RETURNING *", *params)
        return dict(row)

    def _classify_driver_error(self, exc: BaseException) -> ConnectorError | None:
        try:
            from asyncpg import exceptions as pg
        except ImportError:
            return None

        message = str(exc)
        if isinstance(exc, pg.InvalidAuthorizationSpecificationError):
            return self._connection_error(exc, reason="auth")
        if isinstance(exc, pg.PostgresConnectionError | pg.CannotConnectNowError):
            return self._connection_error(exc)
        if isinstance(exc, pg.ConnectionDoesNotExistError):
            return self._connection_error(exc, reason="lost")
        if isinstance(exc, pg.IntegrityConstraintViolationError | pg.DataError):
            return ValidationError(f"postgres rejected the record: {message}", cause=exc)
        if isinstance(exc, pg.UndefinedColumnError):
            return ValidationError(f"Unknown field: {message}", cause=exc)
        return None


__all__ = ["PostgresAdapter"]
