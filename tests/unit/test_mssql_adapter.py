"""Tests for MssqlAdapter against a fake aioodbc pool."""

from __future__ import annotations

from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import pytest

from crud_connector.adapters import create_adapter
from crud_connector.adapters.mssql import MssqlAdapter, build_dsn
from crud_connector.config import BackendKind, ConnectorConfig, Credentials
from crud_connector.errors import (
    BackendError,
    NotFoundError,
    StoreConnectionError,
    ValidationError,
)
from crud_connector.schema import TODO_SCHEMA


class FakeCursor:
    """Records one statement and replays the next scripted result."""

    def __init__(self, pool: FakePool) -> None:
        self._pool = pool
        self._rows: list[tuple[Any, ...]] = []
        self.description: tuple[tuple[str, ...], ...] | None = None
        self.rowcount = -1

    async def execute(self, sql: str, *params: Any) -> None:
        self._pool.statements.append((sql, list(params)))
        result = self._pool.results.popleft()
        if isinstance(result, BaseException):
            raise result
        if isinstance(result, int):
            self.rowcount = result
            return
        names = list(result[0]) if result else ["id"]
        self.description = tuple((name, None) for name in names)
        self._rows = [tuple(row[name] for name in names) for row in result]

    async def fetchall(self) -> list[tuple[Any, ...]]:
        return self._rows


class FakeConnection:
    def __init__(self, pool: FakePool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def cursor(self) -> AsyncIterator[FakeCursor]:
        yield FakeCursor(self._pool)


class FakePool:
    def __init__(self) -> None:
        self.statements: list[tuple[str, list[Any]]] = []
        self.create_calls: list[dict[str, Any]] = []
        self.results: deque[Any] = deque()
        self.acquired = 0
        self.closed = False
        self.waited = False

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[FakeConnection]:
        self.acquired += 1
        yield FakeConnection(self)

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        self.waited = True


@pytest.fixture()
def mssql_config() -> ConnectorConfig:
    return ConnectorConfig(
        backend=BackendKind.MSSQL,
        host="sql.internal",
        credentials=Credentials(username="sa", password="yourStrong(!)Password"),
        database_name="mydatabase",
        table_or_collection_name="todos",
        tls_required=True,
        max_concurrency=4,
        options={"trust_server_certificate": True},
    )


@pytest.fixture()
def pool() -> FakePool:
    return FakePool()


def _adapter(config: ConnectorConfig, pool: FakePool, schema: Any = TODO_SCHEMA) -> MssqlAdapter:
    async def create_pool(**kwargs: Any) -> FakePool:
        pool.create_calls.append(kwargs)
        return pool

    return MssqlAdapter(config, schema, pool_factory=create_pool)


class TestConnectionString:
    def test_dsn_fields(self, mssql_config: ConnectorConfig) -> None:
        assert build_dsn(mssql_config) == (
            "DRIVER={ODBC Driver 18 for SQL Server};SERVER=sql.internal,1433;"
            "DATABASE=mydatabase;Encrypt=yes;TrustServerCertificate=yes;"
            "UID=sa;PWD=yourStrong(!)Password"
        )

    def test_separators_brace_quoted(self) -> None:
        config = ConnectorConfig(
            backend=BackendKind.MSSQL,
            credentials=Credentials(username="app", password="a;b}c"),
            database_name="db",
            options={"odbc_driver": "FreeTDS"},
        )
        dsn = build_dsn(config)
        assert dsn.startswith("DRIVER={FreeTDS};SERVER=localhost,1433;")
        assert "Encrypt=no" in dsn
        assert "TrustServerCertificate" not in dsn
        assert dsn.endswith("PWD={a;b}}c}")

    def test_no_credentials(self) -> None:
        config = ConnectorConfig(backend=BackendKind.MSSQL, database_name="db")
        assert "UID=" not in build_dsn(config)


class TestOpen:
    @pytest.mark.asyncio
    async def test_pool_arguments(self, mssql_config: ConnectorConfig, pool: FakePool) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        kwargs = pool.create_calls[0]
        assert kwargs["dsn"] == build_dsn(mssql_config)
        assert kwargs["maxsize"] == 4
        assert kwargs["autocommit"] is True
        assert kwargs["timeout"] == 10
        assert adapter.supports_concurrency

        await adapter.release()
        assert pool.closed
        assert pool.waited

    @pytest.mark.asyncio
    async def test_unreachable(self, mssql_config: ConnectorConfig) -> None:
        async def create_pool(**kwargs: Any) -> FakePool:
            raise ConnectionRefusedError("connect call failed")

        adapter = MssqlAdapter(mssql_config, pool_factory=create_pool)
        with pytest.raises(StoreConnectionError) as exc_info:
            await adapter.open()
        assert exc_info.value.reason == "unreachable"

    def test_registry_passes_pool_factory(self, mssql_config: ConnectorConfig) -> None:
        factory = object()
        adapter = create_adapter(mssql_config, pool_factory=factory)
        assert isinstance(adapter, MssqlAdapter)
        assert adapter._pool_factory is factory


class TestOperations:
    @pytest.mark.asyncio
    async def test_create_uses_output_inserted(
        self, mssql_config: ConnectorConfig, pool: FakePool
    ) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        pool.results.append([{"id": 1, "title": "Buy milk", "completed": False}])

        created = await adapter.create({"title": "Buy milk"})

        assert created == {"id": 1, "title": "Buy milk", "completed": False}
        assert pool.statements == [
            (
                "INSERT INTO [todos] ([title], [completed]) OUTPUT INSERTED.* VALUES (?, ?)",
                ["Buy milk", False],
            )
        ]

    @pytest.mark.asyncio
    async def test_read_all_qmark_placeholders(
        self, mssql_config: ConnectorConfig, pool: FakePool
    ) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        pool.results.append([{"id": 2, "title": "B", "completed": True}])

        rows = await adapter.read_all({"title": "B", "completed": True})

        assert rows == [{"id": 2, "title": "B", "completed": True}]
        assert pool.statements[0] == (
            "SELECT * FROM [todos] WHERE [title] = ? AND [completed] = ? ORDER BY [id]",
            ["B", True],
        )

    @pytest.mark.asyncio
    async def test_read_one_missing(self, mssql_config: ConnectorConfig, pool: FakePool) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        pool.results.append([])
        with pytest.raises(NotFoundError):
            await adapter.read_one("7")
        assert pool.statements[0] == ("SELECT * FROM [todos] WHERE [id] = ?", [7])

    @pytest.mark.asyncio
    async def test_identity_beyond_int_column(
        self, mssql_config: ConnectorConfig, pool: FakePool
    ) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        with pytest.raises(NotFoundError):
            await adapter.read_one(2**31)
        with pytest.raises(NotFoundError):
            await adapter.delete(2**31)
        assert pool.statements == []

    @pytest.mark.asyncio
    async def test_update_then_reads_back(
        self, mssql_config: ConnectorConfig, pool: FakePool
    ) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        pool.results.extend([1, [{"id": 3, "title": "x", "completed": True}]])

        updated = await adapter.update(3, {"completed": True})

        assert updated["completed"] is True
        assert pool.statements[0] == ("UPDATE [todos] SET [completed] = ? WHERE [id] = ?", [True, 3])

    @pytest.mark.asyncio
    async def test_update_missing(self, mssql_config: ConnectorConfig, pool: FakePool) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        pool.results.extend([0, []])
        with pytest.raises(NotFoundError):
            await adapter.update(3, {"completed": True})

    @pytest.mark.asyncio
    async def test_delete(self, mssql_config: ConnectorConfig, pool: FakePool) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        pool.results.extend([1, 0])
        assert await adapter.delete(4) == 1
        with pytest.raises(NotFoundError):
            await adapter.delete(4)

    @pytest.mark.asyncio
    async def test_ensure_table_is_guarded(
        self, mssql_config: ConnectorConfig, pool: FakePool
    ) -> None:
        config = mssql_config.with_options(options={"create_table": True})
        adapter = _adapter(config, pool)
        pool.results.append(-1)
        await adapter.open()
        assert pool.statements == [
            (
                "IF OBJECT_ID(N'todos', N'U') IS NULL CREATE TABLE [todos] "
                "(id INT IDENTITY(1,1) PRIMARY KEY, [title] NVARCHAR(255) NOT NULL, "
                "[completed] BIT NOT NULL)",
                [],
            )
        ]


class TestClassification:
    @pytest.fixture()
    def pyodbc(self) -> Any:
        return pytest.importorskip("pyodbc")

    @pytest.mark.asyncio
    async def test_login_failed(self, mssql_config: ConnectorConfig, pyodbc: Any) -> None:
        async def create_pool(**kwargs: Any) -> FakePool:
            raise pyodbc.InterfaceError("28000", "[28000] Login failed for user 'sa'. (18456)")

        with pytest.raises(StoreConnectionError) as exc_info:
            await MssqlAdapter(mssql_config, pool_factory=create_pool).open()
        assert exc_info.value.reason == "auth"

    @pytest.mark.asyncio
    async def test_login_timeout(self, mssql_config: ConnectorConfig, pyodbc: Any) -> None:
        async def create_pool(**kwargs: Any) -> FakePool:
            raise pyodbc.OperationalError("HYT00", "[HYT00] Login timeout expired (0)")

        with pytest.raises(StoreConnectionError) as exc_info:
            await MssqlAdapter(mssql_config, pool_factory=create_pool).open()
        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_not_null_violation(
        self, mssql_config: ConnectorConfig, pool: FakePool, pyodbc: Any
    ) -> None:
        adapter = _adapter(mssql_config, pool, schema=None)
        await adapter.open()
        pool.results.append(
            pyodbc.IntegrityError("23000", "[23000] Cannot insert the value NULL into column 'title'")
        )
        with pytest.raises(ValidationError):
            await adapter.create({"title": None})

    @pytest.mark.asyncio
    async def test_invalid_column(
        self, mssql_config: ConnectorConfig, pool: FakePool, pyodbc: Any
    ) -> None:
        adapter = _adapter(mssql_config, pool, schema=None)
        await adapter.open()
        pool.results.append(pyodbc.ProgrammingError("42S22", "[42S22] Invalid column name 'colour'"))
        with pytest.raises(ValidationError):
            await adapter.read_all({"colour": "red"})

    @pytest.mark.asyncio
    async def test_link_failure_is_lost(
        self, mssql_config: ConnectorConfig, pool: FakePool, pyodbc: Any
    ) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        pool.results.append(pyodbc.OperationalError("08S01", "[08S01] Communication link failure"))
        with pytest.raises(StoreConnectionError) as exc_info:
            await adapter.read_all()
        assert exc_info.value.reason == "lost"

    @pytest.mark.asyncio
    async def test_query_timeout(
        self, mssql_config: ConnectorConfig, pool: FakePool, pyodbc: Any
    ) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        pool.results.append(pyodbc.OperationalError("HYT00", "[HYT00] Query timeout expired"))
        with pytest.raises(BackendError) as exc_info:
            await adapter.read_all()
        assert exc_info.value.timeout is True

    @pytest.mark.asyncio
    async def test_unclassified_is_backend_error(
        self, mssql_config: ConnectorConfig, pool: FakePool, pyodbc: Any
    ) -> None:
        adapter = _adapter(mssql_config, pool)
        await adapter.open()
        pool.results.append(pyodbc.ProgrammingError("42S02", "[42S02] Invalid object name 'todos'"))
        with pytest.raises(BackendError) as exc_info:
            await adapter.read_all()
        assert "Invalid object name" in exc_info.value.message
