"""REST facade exposing a connector over HTTP."""

from crud_connector.http.server import (
    CrudHttpServer,
    CrudHttpServerConfig,
    create_app,
    status_for,
)

__all__ = [
    "CrudHttpServer",
    "CrudHttpServerConfig",
    "create_app",
    "status_for",
]
