"""MySQL adapter.

Uses the asyncio API of ``mysql-connector-python`` (``mysql.connector.aio``).
MySQL uses **format** (``%s``) placeholders. One connection backs the adapter,
so the connector serializes operations.

Install the driver::

    pip install crud-connector[mysql]
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from crud_connector.adapters.table import StatementResult, TableAdapter
from crud_connector.config import BackendKind
from crud_connector.errors import ConnectorError, StoreConnectionError, ValidationError
from crud_connector.models import Record

# Client-side connection failures: can't connect, unknown host, server gone
# away, lost connection during query, lost connection to server.
_CONNECTION_ERRNOS = frozenset({2003, 2005, 2006, 2013, 2055})
_ACCESS_DENIED_ERRNOS = frozenset({1044, 1045, 1698})
_BAD_FIELD_ERRNO = 1054


class MysqlAdapter(TableAdapter):
    """MySQL / MariaDB adapter on a single autocommit connection."""

    kind = BackendKind.MYSQL
    supports_concurrency = False

    id_column_ddl = "id BIGINT AUTO_INCREMENT PRIMARY KEY"
    column_types = {str: "VARCHAR(255)", int: "BIGINT", float: "DOUBLE", bool: "BOOLEAN"}

    def placeholder(self, index: int) -> str:
        return "%s"

    def quote(self, identifier: str) -> str:
        return f"`{identifier}`"

    async def _connect(self) -> Any:
        try:
            from mysql.connector.aio import connect
        except ImportError:
            raise StoreConnectionError(
                "mysql-connector-python is required for the mysql backend. "
                "Install with: pip install crud-connector[mysql]",
                reason="driver_missing",
            ) from None

        config = self._config
        return await connect(
            host=config.host,
            port=config.port,
            user=config.username,
            password=config.password or "",
            database=config.database_name,
            autocommit=True,
            connection_timeout=int(config.connect_timeout),
            ssl_disabled=not config.tls_required,
            **config.options.get("driver_options", {}),
        )

    async def _disconnect(self, session: Any) -> None:
        await session.close()

    async def _fetch(self, sql: str, params: Sequence[Any]) -> list[Record]:
        cursor = await self._session.cursor(dictionary=True)
        try:
            await cursor.execute(sql, tuple(params))
            rows = await cursor.fetchall()
        finally:
            await cursor.close()
        return [dict(row) for row in rows]

    async def _execute(self, sql: str, params: Sequence[Any]) -> StatementResult:
        cursor = await self._session.cursor()
        try:
            await cursor.execute(sql, tuple(params))
            return StatementResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid or None)
        finally:
            await cursor.close()

    def _classify_driver_error(self, exc: BaseException) -> ConnectorError | None:
        try:
            from mysql.connector import errors
        except ImportError:
            return None

        if not isinstance(exc, errors.Error):
            return None
        errno = getattr(exc, "errno", None)
        message = getattr(exc, "msg", None) or str(exc)
        if errno in _ACCESS_DENIED_ERRNOS:
            return self._connection_error(exc, reason="auth")
        if errno in _CONNECTION_ERRNOS or isinstance(exc, errors.InterfaceError):
            return self._connection_error(exc)
        if isinstance(exc, errors.IntegrityError | errors.DataError):
            return ValidationError(f"mysql rejected the record: {message}", cause=exc)
        if errno == _BAD_FIELD_ERRNO:
            return ValidationError(f"Unknown field: {message}", cause=exc)
        return None


__all__ = ["MysqlAdapter"]
