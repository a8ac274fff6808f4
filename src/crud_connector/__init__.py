"""Unified CRUD Connector.

One async create/read/update/delete contract over relational tables (SQLite,
PostgreSQL, MySQL, SQL Server) and document collections (MongoDB), with a
shared error taxonomy, per-operation deadlines and an optional REST facade.
"""

from crud_connector.adapters import BackendAdapter, create_adapter
from crud_connector.config import BackendKind, ConnectorConfig, Credentials
from crud_connector.connector import ConnectorState, CrudConnector
from crud_connector.errors import (
    BackendError,
    ConnectorClosedError,
    ConnectorError,
    ErrorKind,
    NotFoundError,
    StoreConnectionError,
    ValidationError,
)
from crud_connector.gate import GateMetrics, OperationGate
from crud_connector.handle import ConnectionHandle
from crud_connector.models import Operation, OperationRequest, OperationResult, Record
from crud_connector.schema import TODO_SCHEMA, FieldSpec, RecordSchema

__version__ = "0.1.0"

__all__ = [
    # Connector
    "ConnectorState",
    "CrudConnector",
    "BackendAdapter",
    "ConnectionHandle",
    "create_adapter",
    # Configuration
    "BackendKind",
    "ConnectorConfig",
    "Credentials",
    # Records
    "FieldSpec",
    "Operation",
    "OperationRequest",
    "OperationResult",
    "Record",
    "RecordSchema",
    "TODO_SCHEMA",
    # Errors
    "BackendError",
    "ConnectorClosedError",
    "ConnectorError",
    "ErrorKind",
    "NotFoundError",
    "StoreConnectionError",
    "ValidationError",
    # Concurrency
    "GateMetrics",
    "OperationGate",
]
