"""Document adapter for MongoDB using the motor async driver.

Records map onto documents one to one, except for the identity: the store's
``_id`` (an ObjectId) is exposed as ``id`` rendered as a hex string. Filters are
structural-equality documents; operator keys are refused so a caller-supplied
filter or payload can never turn into a query operator.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from typing import Any

from crud_connector.adapters.base import AdapterBase
from crud_connector.config import BackendKind, ConnectorConfig
from crud_connector.errors import (
    ConnectorError,
    NotFoundError,
    StoreConnectionError,
    ValidationError,
)
from crud_connector.models import Record, RecordFilter
from crud_connector.schema import ID_FIELD, RecordSchema

MONGO_ID = "_id"

# Server error codes: AuthenticationFailed, Unauthorized, DocumentValidationFailure.
_AUTH_CODES = frozenset({13, 18})
_DOCUMENT_VALIDATION_CODE = 121


def _check_keys(document: Mapping[str, Any], where: str, *, nested: bool = False) -> None:
    """Refuse operator and dotted keys anywhere, and ``_id`` at the top level."""
    for key, value in document.items():
        if not isinstance(key, str) or key.startswith("$") or "." in key:
            raise ValidationError(f"Invalid {where} key: {key!r}", field=str(key))
        if key == MONGO_ID and not nested:
            raise ValidationError(f"Invalid {where} key: {key!r}", field=key)
        if isinstance(value, Mapping):
            _check_keys(value, where, nested=True)
        elif isinstance(value, list | tuple):
            for item in value:
                if isinstance(item, Mapping):
                    _check_keys(item, where, nested=True)


class DocumentAdapter(AdapterBase):
    """MongoDB adapter bound to one collection.

    The motor client keeps its own connection pool, so concurrent operations
    are safe.

    Args:
        config: Connector configuration; ``table_or_collection_name`` names
            the collection.
        schema: Optional field policy. Documents are schemaless without one.
        client_factory: Callable building the client, defaulting to
            ``motor.motor_asyncio.AsyncIOMotorClient``.
    """

    kind = BackendKind.MONGODB
    supports_concurrency = True

    def __init__(
        self,
        config: ConnectorConfig,
        schema: RecordSchema | None = None,
        *,
        client_factory: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__(config, schema)
        self._client_factory = client_factory

    def _client_kwargs(self) -> dict[str, Any]:
        config = self._config
        kwargs: dict[str, Any] = {
            "host": config.host,
            "port": config.port,
            "tls": config.tls_required,
            "serverSelectionTimeoutMS": int(config.connect_timeout * 1000),
            "maxPoolSize": config.max_concurrency,
        }
        if config.credentials is not None:
            kwargs["username"] = config.username
            kwargs["password"] = config.password
            kwargs["authSource"] = config.options.get("auth_source", "admin")
        return kwargs

    async def _connect(self) -> Any:
        factory = self._client_factory
        if factory is None:
            try:
                from motor.motor_asyncio import AsyncIOMotorClient
            except ImportError:
                raise StoreConnectionError(
                    "motor is required for the mongodb backend. "
                    "Install with: pip install crud-connector[mongodb]",
                    reason="driver_missing",
                ) from None
            factory = AsyncIOMotorClient

        client = factory(**self._client_kwargs())
        try:
            # Clients connect lazily; ping so a bad host or credential fails now.
            await client.admin.command("ping")
        except BaseException:
            await self._disconnect(client)
            raise
        return client

    async def _disconnect(self, session: Any) -> None:
        result = session.close()
        if inspect.isawaitable(result):
            await result

    @property
    def collection(self) -> Any:
        """The bound collection."""
        return self._session[self._config.database_name][self._config.table_or_collection_name]

    # -- translation ----------------------------------------------------------

    def _object_id(self, record_id: Any) -> Any:
        from bson import ObjectId
        from bson.errors import InvalidId

        if isinstance(record_id, ObjectId):
            return record_id
        try:
            return ObjectId(str(record_id))
        except (InvalidId, TypeError):
            raise ValidationError(f"Invalid id: {record_id!r}", field=ID_FIELD) from None

    def _to_filter(self, filter: RecordFilter | None) -> dict[str, Any]:
        if not filter:
            return {}
        if self._schema is not None:
            self._schema.check_filter(filter)
        query: dict[str, Any] = {}
        rest = {key: value for key, value in filter.items() if key != ID_FIELD}
        _check_keys(rest, "filter")
        if ID_FIELD in filter:
            query[MONGO_ID] = self._object_id(filter[ID_FIELD])
        query.update(rest)
        return query

    def _normalize(self, document: Mapping[str, Any]) -> Record:
        data = dict(document)
        record: Record = {ID_FIELD: str(data.pop(MONGO_ID))}
        record.update(data)
        if self._schema is not None:
            record = self._schema.coerce(record)
        return record

    def _prepare_create(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        if ID_FIELD in payload:
            raise ValidationError("create payload must not contain the 'id' field", field=ID_FIELD)
        _check_keys(payload, "payload")
        return self._schema.prepare_create(payload) if self._schema else dict(payload)

    def _prepare_update(self, partial: Mapping[str, Any]) -> dict[str, Any]:
        if ID_FIELD in partial:
            raise ValidationError("update partial must not contain the 'id' field", field=ID_FIELD)
        _check_keys(partial, "partial")
        return self._schema.prepare_update(partial) if self._schema else dict(partial)

    def _classify_driver_error(self, exc: BaseException) -> ConnectorError | None:
        try:
            from bson.errors import BSONError
            from pymongo import errors
        except ImportError:
            return None

        message = str(exc)
        if isinstance(exc, errors.DuplicateKeyError):
            return ValidationError(f"Duplicate key: {message}", cause=exc)
        if isinstance(exc, errors.WriteError) and exc.code == _DOCUMENT_VALIDATION_CODE:
            return ValidationError(f"Document failed validation: {message}", cause=exc)
        if isinstance(exc, errors.OperationFailure) and exc.code in _AUTH_CODES:
            return self._connection_error(exc, reason="auth")
        if isinstance(exc, errors.ConnectionFailure | errors.ConfigurationError):
            return self._connection_error(exc)
        if isinstance(exc, BSONError):
            return ValidationError(f"Document cannot be encoded: {message}", cause=exc)
        return None

    # -- operations -----------------------------------------------------------

    async def create(self, payload: Mapping[str, Any]) -> Record:
        """Insert a document and return it with the generated key."""
        document = self._prepare_create(payload)
        async with self._translate():
            result = await self.collection.insert_one(dict(document))
        return self._normalize({MONGO_ID: result.inserted_id, **document})

    async def read_one(self, record_id: Any) -> Record:
        """Find one document by key.

        Raises:
            NotFoundError: If no document has that key.
        """
        oid = self._object_id(record_id)
        async with self._translate():
            document = await self.collection.find_one({MONGO_ID: oid})
        if document is None:
            raise NotFoundError(f"Record {oid} not found", record_id=str(oid))
        return self._normalize(document)

    async def read_all(self, filter: RecordFilter | None = None) -> list[Record]:
        """Find every document structurally matching the filter."""
        query = self._to_filter(filter)
        async with self._translate():
            documents = await self.collection.find(query).to_list(length=None)
        return [self._normalize(document) for document in documents]

    async def update(self, record_id: Any, partial: Mapping[str, Any]) -> Record:
        """Merge named fields with ``$set`` and return the updated document.

        Raises:
            NotFoundError: If no document has that key.
        """
        from pymongo import ReturnDocument

        oid = self._object_id(record_id)
        changes = self._prepare_update(partial)
        if not changes:
            return await self.read_one(oid)
        async with self._translate():
            document = await self.collection.find_one_and_update(
                {MONGO_ID: oid},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        if document is None:
            raise NotFoundError(f"Record {oid} not found", record_id=str(oid))
        return self._normalize(document)

    async def delete(self, record_id: Any) -> int:
        """Delete at most one document by key.

        Raises:
            NotFoundError: If no document has that key.
        """
        oid = self._object_id(record_id)
        async with self._translate():
            result = await self.collection.delete_one({MONGO_ID: oid})
        if result.deleted_count == 0:
            raise NotFoundError(f"Record {oid} not found", record_id=str(oid))
        return result.deleted_count


__all__ = ["DocumentAdapter"]
