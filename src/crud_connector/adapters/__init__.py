"""Backend adapters: one implementation of the CRUD capability set per store."""

from crud_connector.adapters.base import AdapterBase, BackendAdapter
from crud_connector.adapters.document import DocumentAdapter
from crud_connector.adapters.mssql import MssqlAdapter
from crud_connector.adapters.mysql import MysqlAdapter
from crud_connector.adapters.postgres import PostgresAdapter
from crud_connector.adapters.registry import AdapterRegistry, adapter_registry, create_adapter
from crud_connector.adapters.sqlite import SqliteAdapter
from crud_connector.adapters.table import StatementResult, TableAdapter

__all__ = [
    # Protocol and bases
    "AdapterBase",
    "BackendAdapter",
    "StatementResult",
    "TableAdapter",
    # Implementations
    "DocumentAdapter",
    "MssqlAdapter",
    "MysqlAdapter",
    "PostgresAdapter",
    "SqliteAdapter",
    # Registry
    "AdapterRegistry",
    "adapter_registry",
    "create_adapter",
]
