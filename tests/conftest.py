"""Pytest configuration and fixtures for crud-connector tests."""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator, Mapping
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio
from bson import ObjectId
from pymongo import ReturnDocument

from crud_connector import TODO_SCHEMA, BackendKind, ConnectorConfig, CrudConnector

_MISSING = object()


def _matches(document: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    return all(document.get(key, _MISSING) == value for key, value in query.items())


class FakeCursor:
    """Stand-in for a motor cursor."""

    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self._documents = documents

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        documents = [copy.deepcopy(document) for document in self._documents]
        return documents if length is None else documents[:length]


class FakeCollection:
    """In-memory stand-in for a motor collection.

    Set ``fail_with`` to make the next call raise that exception.
    """

    def __init__(self) -> None:
        self.documents: list[dict[str, Any]] = []
        self.calls: list[tuple[str, Any]] = []
        self.fail_with: BaseException | None = None

    def _record(self, name: str, argument: Any) -> None:
        self.calls.append((name, copy.deepcopy(argument)))
        if self.fail_with is not None:
            exc, self.fail_with = self.fail_with, None
            raise exc

    async def insert_one(self, document: dict[str, Any]) -> SimpleNamespace:
        self._record("insert_one", document)
        stored = copy.deepcopy(document)
        stored.setdefault("_id", ObjectId())
        self.documents.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    async def find_one(self, query: dict[str, Any]) -> dict[str, Any] | None:
        self._record("find_one", query)
        for document in self.documents:
            if _matches(document, query):
                return copy.deepcopy(document)
        return None

    def find(self, query: dict[str, Any]) -> FakeCursor:
        self._record("find", query)
        return FakeCursor([document for document in self.documents if _matches(document, query)])

    async def find_one_and_update(
        self,
        query: dict[str, Any],
        update: dict[str, Any],
        return_document: Any = ReturnDocument.BEFORE,
    ) -> dict[str, Any] | None:
        self._record("find_one_and_update", update)
        for document in self.documents:
            if _matches(document, query):
                before = copy.deepcopy(document)
                document.update(copy.deepcopy(update["$set"]))
                return copy.deepcopy(document) if return_document == ReturnDocument.AFTER else before
        return None

    async def delete_one(self, query: dict[str, Any]) -> SimpleNamespace:
        self._record("delete_one", query)
        for index, document in enumerate(self.documents):
            if _matches(document, query):
                del self.documents[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection())


class FakeAdmin:
    def __init__(self, error: BaseException | None) -> None:
        self._error = error
        self.commands: list[str] = []

    async def command(self, name: str) -> dict[str, Any]:
        self.commands.append(name)
        if self._error is not None:
            raise self._error
        return {"ok": 1.0}


class FakeMongoClient:
    """In-memory stand-in for ``AsyncIOMotorClient``."""

    def __init__(self, ping_error: BaseException | None = None, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.admin = FakeAdmin(ping_error)
        self.databases: dict[str, FakeDatabase] = {}
        self.closed = False

    def __getitem__(self, name: str) -> FakeDatabase:
        return self.databases.setdefault(name, FakeDatabase())

    def close(self) -> None:
        self.closed = True


class FakeMongoFactory:
    """Client factory that remembers every client it built."""

    def __init__(self) -> None:
        self.clients: list[FakeMongoClient] = []
        self.ping_error: BaseException | None = None

    def __call__(self, **kwargs: Any) -> FakeMongoClient:
        client = FakeMongoClient(ping_error=self.ping_error, **kwargs)
        self.clients.append(client)
        return client

    @property
    def client(self) -> FakeMongoClient:
        return self.clients[-1]

    def collection(self, database: str = "todo_app", name: str = "todos") -> FakeCollection:
        return self.client[database][name]


@pytest.fixture()
def sqlite_path(tmp_path: Path) -> Path:
    """Provide a database file path inside a temporary directory."""
    return tmp_path / "todos.db"


@pytest.fixture()
def sqlite_config(sqlite_path: Path) -> ConnectorConfig:
    """SQLite config for a ``todos`` table created on open."""
    return ConnectorConfig(
        backend=BackendKind.SQLITE,
        database_name=str(sqlite_path),
        table_or_collection_name="todos",
        options={"create_table": True},
    )


@pytest.fixture()
def mongo_config() -> ConnectorConfig:
    """MongoDB config for the ``todo_app.todos`` collection."""
    return ConnectorConfig(
        backend=BackendKind.MONGODB,
        database_name="todo_app",
        table_or_collection_name="todos",
        connect_timeout=2.0,
    )


@pytest.fixture()
def fake_mongo() -> FakeMongoFactory:
    """Provide a fake motor client factory."""
    return FakeMongoFactory()


@pytest_asyncio.fixture()
async def sqlite_todos(sqlite_config: ConnectorConfig) -> AsyncIterator[CrudConnector]:
    """Open to-do connector on a temporary SQLite file."""
    async with CrudConnector.from_config(sqlite_config, TODO_SCHEMA) as connector:
        yield connector


@pytest_asyncio.fixture()
async def mongo_todos(
    mongo_config: ConnectorConfig, fake_mongo: FakeMongoFactory
) -> AsyncIterator[CrudConnector]:
    """Open to-do connector on the fake MongoDB client."""
    connector = CrudConnector.from_config(mongo_config, TODO_SCHEMA, client_factory=fake_mongo)
    async with connector:
        yield connector


@pytest_asyncio.fixture(params=["sqlite", "mongodb"])
async def todos(
    request: pytest.FixtureRequest,
    sqlite_config: ConnectorConfig,
    mongo_config: ConnectorConfig,
    fake_mongo: FakeMongoFactory,
) -> AsyncIterator[CrudConnector]:
    """Open to-do connector for each adapter variant: table and document."""
    if request.param == "sqlite":
        connector = CrudConnector.from_config(sqlite_config, TODO_SCHEMA)
    else:
        connector = CrudConnector.from_config(mongo_config, TODO_SCHEMA, client_factory=fake_mongo)
    async with connector:
        yield connector


@pytest.fixture()
def missing_id(todos: CrudConnector) -> Any:
    """An identity well-formed for the connector's backend that was never issued."""
    return str(ObjectId()) if todos.backend == BackendKind.MONGODB.value else 987654
