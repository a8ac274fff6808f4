"""Adapter registry and factory.

Callers never hard-code adapter classes: the registry maps a
:class:`~crud_connector.config.BackendKind` to the class implementing it and
:func:`create_adapter` builds one from a config.
"""

from __future__ import annotations

from typing import Any

from crud_connector.adapters.base import AdapterBase
from crud_connector.adapters.document import DocumentAdapter
from crud_connector.adapters.mssql import MssqlAdapter
from crud_connector.adapters.mysql import MysqlAdapter
from crud_connector.adapters.postgres import PostgresAdapter
from crud_connector.adapters.sqlite import SqliteAdapter
from crud_connector.config import BackendKind, ConnectorConfig
from crud_connector.schema import RecordSchema


class AdapterRegistry:
    """
    Registry of adapter classes keyed by backend kind.

    Pre-registered adapters:
    - ``sqlite``: :class:`SqliteAdapter`
    - ``postgres``: :class:`PostgresAdapter`
    - ``mysql``: :class:`MysqlAdapter`
    - ``mssql``: :class:`MssqlAdapter`
    - ``mongodb``: :class:`DocumentAdapter`
    """

    def __init__(self) -> None:
        self._factories: dict[BackendKind, type[AdapterBase]] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        """Register default adapters."""
        self.register(BackendKind.SQLITE, SqliteAdapter)
        self.register(BackendKind.POSTGRES, PostgresAdapter)
        self.register(BackendKind.MYSQL, MysqlAdapter)
        self.register(BackendKind.MSSQL, MssqlAdapter)
        self.register(BackendKind.MONGODB, DocumentAdapter)

    def register(self, kind: BackendKind | str, adapter_class: type[AdapterBase]) -> None:
        """Register (or replace) the adapter class for a backend kind."""
        self._factories[BackendKind.parse(kind)] = adapter_class

    def get(self, kind: BackendKind | str) -> type[AdapterBase]:
        """Look up the adapter class for a backend kind.

        Raises:
            ValueError: If nothing is registered for the kind.
        """
        resolved = BackendKind.parse(kind)
        if resolved not in self._factories:
            raise ValueError(f"No adapter registered for backend: {resolved.value}")
        return self._factories[resolved]

    def create(
        self,
        config: ConnectorConfig,
        schema: RecordSchema | None = None,
        **kwargs: Any,
    ) -> AdapterBase:
        """Build an adapter for ``config.backend``."""
        return self.get(config.backend)(config, schema, **kwargs)

    def list_backends(self) -> list[str]:
        """List registered backend names."""
        return sorted(kind.value for kind in self._factories)


adapter_registry = AdapterRegistry()


def create_adapter(
    config: ConnectorConfig,
    schema: RecordSchema | None = None,
    **kwargs: Any,
) -> AdapterBase:
    """
    Build an unopened adapter for a config.

    Usage:
        adapter = create_adapter(ConnectorConfig.from_url("sqlite:///todos.db"), TODO_SCHEMA)
        adapter = create_adapter(ConnectorConfig.from_env())
    """
    return adapter_registry.create(config, schema, **kwargs)


__all__ = [
    "AdapterRegistry",
    "adapter_registry",
    "create_adapter",
]
