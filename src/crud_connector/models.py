"""Operation requests and results exchanged between callers and the connector."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from crud_connector.errors import ConnectorError, ValidationError
from crud_connector.schema import ID_FIELD

Record = dict[str, Any]
"""One persisted entity: an ordered mapping of field name to value, keyed by ``id``."""

RecordFilter = Mapping[str, Any]
"""Equality predicate: every named field must equal the given value."""


class Operation(str, Enum):
    """The five operations of the connector contract."""

    CREATE = "create"
    READ_ONE = "read_one"
    READ_ALL = "read_all"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def needs_id(self) -> bool:
        """Whether the operation addresses one record by identity."""
        return self in (Operation.READ_ONE, Operation.UPDATE, Operation.DELETE)


_EMPTY: Mapping[str, Any] = MappingProxyType({})


def _check_mapping(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValidationError(f"{name} must be a mapping, got {type(value).__name__}")
    return value


@dataclass(frozen=True, slots=True)
class OperationRequest:
    """A single CRUD request.

    Use the factory classmethods rather than the constructor; they enforce the
    request invariants:

    - ``payload`` (create) and ``partial`` (update) never carry the ``id`` field.
    - ``read_one``, ``update`` and ``delete`` always carry an identity.

    Attributes:
        operation: Which operation to perform.
        record_id: Target identity for read_one, update and delete.
        payload: Field values for create, or the partial for update.
        filter: Equality filter for read_all, or None for every record.
    """

    operation: Operation
    record_id: Any = None
    payload: Mapping[str, Any] = field(default=_EMPTY)
    filter: RecordFilter | None = None

    def __post_init__(self) -> None:
        """Validate the request invariants.

        Raises:
            ValidationError: If the request shape is invalid for its operation.
        """
        payload = _check_mapping(self.payload, "payload")
        if ID_FIELD in payload:
            raise ValidationError(
                f"{self.operation.value} payload must not contain the '{ID_FIELD}' field",
                field=ID_FIELD,
            )
        if self.operation.needs_id and (self.record_id is None or self.record_id == ""):
            raise ValidationError(f"{self.operation.value} requires a record id", field=ID_FIELD)
        if self.filter is not None:
            _check_mapping(self.filter, "filter")

    @classmethod
    def create(cls, payload: Mapping[str, Any]) -> OperationRequest:
        """Request to persist a new record."""
        return cls(Operation.CREATE, payload=_check_mapping(payload, "payload"))

    @classmethod
    def read_one(cls, record_id: Any) -> OperationRequest:
        """Request one record by identity."""
        return cls(Operation.READ_ONE, record_id=record_id)

    @classmethod
    def read_all(cls, filter: RecordFilter | None = None) -> OperationRequest:
        """Request every record, optionally matching an equality filter."""
        return cls(Operation.READ_ALL, filter=filter)

    @classmethod
    def update(cls, record_id: Any, partial: Mapping[str, Any]) -> OperationRequest:
        """Request a partial merge into an existing record."""
        return cls(Operation.UPDATE, record_id=record_id, payload=_check_mapping(partial, "partial"))

    @classmethod
    def delete(cls, record_id: Any) -> OperationRequest:
        """Request removal of one record."""
        return cls(Operation.DELETE, record_id=record_id)


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of one request: a value or a classified error, never both.

    Attributes:
        request: The request that produced this result.
        value: Record (create, read_one, update), list of Records (read_all)
            or ``True`` (delete). None on failure.
        error: The classified error on failure.
        latency_ms: Wall-clock time spent in the connector.
    """

    request: OperationRequest
    value: Any = None
    error: ConnectorError | None = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded."""
        return self.error is None

    def unwrap(self) -> Any:
        """Return the value, or raise the classified error."""
        if self.error is not None:
            raise self.error
        return self.value


__all__ = [
    "Operation",
    "OperationRequest",
    "OperationResult",
    "Record",
    "RecordFilter",
]
