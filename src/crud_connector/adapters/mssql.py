"""Microsoft SQL Server adapter backed by an aioodbc connection pool.

aioodbc runs pyodbc calls on a thread pool and keeps a pool of ODBC
connections, so concurrent callers each get their own session. pyodbc uses
qmark (``?``) placeholders; identifiers are quoted with brackets.

Install the driver::

    pip install crud-connector[mssql]

An ODBC driver for SQL Server (``ODBC Driver 18 for SQL Server`` by default)
must be installed on the host.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

from crud_connector.adapters.table import StatementResult, TableAdapter
from crud_connector.config import BackendKind, ConnectorConfig
from crud_connector.errors import (
    BackendError,
    ConnectorError,
    StoreConnectionError,
    ValidationError,
)
from crud_connector.models import Record
from crud_connector.schema import RecordSchema

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

_LOGIN_FAILED = "28000"
_INVALID_COLUMN = "42S22"
_TIMEOUT_STATES = frozenset({"HYT00", "HYT01"})


def _odbc_value(value: Any) -> str:
    """Brace-quote a connection string value that contains separators."""
    text = str(value)
    if any(char in text for char in ";{}=") or text != text.strip():
        return "{" + text.replace("}", "}}") + "}"
    return text


def _sqlstate(exc: BaseException) -> str:
    # pyodbc errors carry (sqlstate, message) as their args.
    if exc.args and isinstance(exc.args[0], str):
        return exc.args[0]
    return ""


def build_dsn(config: ConnectorConfig) -> str:
    """Build an ODBC connection string from a config.

    ``options`` may carry ``odbc_driver`` and ``trust_server_certificate``
    (for self-signed server certificates).
    """
    parts = {
        "DRIVER": "{" + config.options.get("odbc_driver", DEFAULT_ODBC_DRIVER) + "}",
        "SERVER": f"{config.host},{config.port}",
        "DATABASE": _odbc_value(config.database_name),
        "Encrypt": "yes" if config.tls_required else "no",
    }
    if config.options.get("trust_server_certificate"):
        parts["TrustServerCertificate"] = "yes"
    if config.credentials is not None:
        parts["UID"] = _odbc_value(config.username)
        parts["PWD"] = _odbc_value(config.password or "")
    return ";".join(f"{key}={value}" for key, value in parts.items())


class MssqlAdapter(TableAdapter):
    """SQL Server adapter on an aioodbc pool.

    Args:
        config: Connector configuration.
        schema: Optional field policy.
        pool_factory: Coroutine function building the pool, defaulting to
            ``aioodbc.create_pool``.
    """

    kind = BackendKind.MSSQL
    supports_concurrency = True

    id_column_ddl = "id INT IDENTITY(1,1) PRIMARY KEY"
    id_range = (-(2**31), 2**31 - 1)
    column_types = {str: "NVARCHAR(255)", int: "BIGINT", float: "FLOAT", bool: "BIT"}

    def __init__(
        self,
        config: ConnectorConfig,
        schema: RecordSchema | None = None,
        *,
        pool_factory: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__(config, schema)
        self._pool_factory = pool_factory

    def placeholder(self, index: int) -> str:
        return "?"

    def quote(self, identifier: str) -> str:
        return f"[{identifier}]"

    def build_insert(self, record: Mapping[str, Any]) -> tuple[str, list[Any]]:
        """Build ``INSERT INTO t (a, b) OUTPUT INSERTED.* VALUES (?, ?)``."""
        columns = self._columns(record)
        placeholders = ", ".join("?" for _ in columns)
        sql = (
            f"INSERT INTO {self.table} ({', '.join(columns)}) "
            f"OUTPUT INSERTED.* VALUES ({placeholders})"
        )
        return sql, list(record.values())

    def build_create_table(self) -> str:
        """Build a guarded ``CREATE TABLE``; T-SQL has no ``IF NOT EXISTS`` form."""
        create = super().build_create_table().replace(" IF NOT EXISTS", "", 1)
        name = self._config.table_or_collection_name
        return f"IF OBJECT_ID(N'{name}', N'U') IS NULL {create}"

    async def _connect(self) -> Any:
        factory = self._pool_factory
        if factory is None:
            try:
                from aioodbc import create_pool
            except ImportError:
                raise StoreConnectionError(
                    "aioodbc is required for the mssql backend. "
                    "Install with: pip install crud-connector[mssql]",
                    reason="driver_missing",
                ) from None
            factory = create_pool

        config = self._config
        return await factory(
            dsn=build_dsn(config),
            minsize=1,
            maxsize=config.max_concurrency,
            autocommit=True,
            timeout=int(config.connect_timeout),
        )

    async def _disconnect(self, session: Any) -> None:
        session.close()
        await session.wait_closed()

    async def _fetch(self, sql: str, params: Sequence[Any]) -> list[Record]:
        async with self._session.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(sql, *params)
                rows = await cursor.fetchall()
                names = [column[0] for column in cursor.description or ()]
        return [dict(zip(names, row, strict=True)) for row in rows]

    async def _execute(self, sql: str, params: Sequence[Any]) -> StatementResult:
        async with self._session.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(sql, *params)
                return StatementResult(rowcount=cursor.rowcount)

    async def _insert(self, record: Mapping[str, Any]) -> Record:
        rows = await self._fetch(*self.build_insert(record))
        if not rows:
            raise BackendError("Insert did not return the stored row")
        return rows[0]

    def _classify_driver_error(self, exc: BaseException) -> ConnectorError | None:
        try:
            import pyodbc
        except ImportError:
            return None

        if not isinstance(exc, pyodbc.Error):
            return None
        state = _sqlstate(exc)
        message = str(exc)
        if state == _LOGIN_FAILED:
            return self._connection_error(exc, reason="auth")
        if state in _TIMEOUT_STATES:
            if not self.is_open:
                return self._connection_error(exc, reason="timeout")
            return BackendError(f"mssql operation timed out: {message}", timeout=True, cause=exc)
        if state.startswith("08") or isinstance(exc, pyodbc.InterfaceError):
            return self._connection_error(exc)
        if state == _INVALID_COLUMN:
            return ValidationError(f"Unknown field: {message}", cause=exc)
        if isinstance(exc, pyodbc.IntegrityError | pyodbc.DataError) or state[:2] in ("22", "23"):
            return ValidationError(f"mssql rejected the record: {message}", cause=exc)
        return None


__all__ = ["DEFAULT_ODBC_DRIVER", "MssqlAdapter", "build_dsn"]
