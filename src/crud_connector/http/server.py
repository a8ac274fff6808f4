"""REST facade over a CRUD connector.

Maps HTTP routes onto the five connector operations and classified errors
onto status codes:

    POST   /{resource}        create     201, 400 on validation error
    GET    /{resource}        read_all   200
    GET    /{resource}/{id}   read_one   200, 404 when missing
    PUT    /{resource}/{id}   update     200, 404 when missing
    DELETE /{resource}/{id}   delete     204, 404 when missing

Connection and closed-connector errors map to 503 and unclassified backend
errors to ``backend_error_status`` (500 by default). Every error body is JSON
with at least an ``error`` message.

Usage:
    server = CrudHttpServer(connector, CrudHttpServerConfig(port=3000))
    await server.start()
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from crud_connector.connector import CrudConnector
from crud_connector.errors import ConnectorError, ErrorKind, ValidationError
from crud_connector.observability import log_event

logger = logging.getLogger(__name__)

CONNECTOR_KEY: web.AppKey[CrudConnector] = web.AppKey("connector", CrudConnector)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONNECTION: 503,
    ErrorKind.CLOSED: 503,
}


def status_for(error: ConnectorError, backend_error_status: int = 500) -> int:
    """HTTP status code for a classified error."""
    return _STATUS_BY_KIND.get(error.kind, backend_error_status)


def _filter_from_query(request: web.Request) -> dict[str, Any] | None:
    """Turn ``?completed=true&title=Buy%20milk`` into an equality filter.

    Values are JSON-decoded when possible so ``true`` and ``3`` compare as a
    boolean and a number; anything else stays a string.
    """
    if not request.query:
        return None
    result: dict[str, Any] = {}
    for key, raw in request.query.items():
        try:
            result[key] = json.loads(raw)
        except ValueError:
            result[key] = raw
    return result


async def _json_object(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


class CrudRoutes:
    """Request handlers bound to one connector and resource name."""

    def __init__(self, resource: str, *, backend_error_status: int = 500) -> None:
        self.resource = resource
        self.backend_error_status = backend_error_status

    @staticmethod
    def _connector(request: web.Request) -> CrudConnector:
        return request.app[CONNECTOR_KEY]

    async def handle_root(self, request: web.Request) -> web.Response:
        """Health check."""
        return web.json_response({"message": "hello, server running"})

    async def handle_create(self, request: web.Request) -> web.Response:
        payload = await _json_object(request)
        record = await self._connector(request).create(payload)
        return web.json_response(record, status=201)

    async def handle_list(self, request: web.Request) -> web.Response:
        records = await self._connector(request).read_all(_filter_from_query(request))
        return web.json_response(records)

    async def handle_get(self, request: web.Request) -> web.Response:
        record = await self._connector(request).read_one(request.match_info["id"])
        return web.json_response(record)

    async def handle_update(self, request: web.Request) -> web.Response:
        partial = await _json_object(request)
        record = await self._connector(request).update(request.match_info["id"], partial)
        return web.json_response(record)

    async def handle_delete(self, request: web.Request) -> web.Response:
        await self._connector(request).delete(request.match_info["id"])
        return web.Response(status=204)

    @web.middleware
    async def error_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        """Render classified errors as JSON; never let a failure crash the server."""
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except ConnectorError as exc:
            status = status_for(exc, self.backend_error_status)
            return web.json_response(exc.to_dict(), status=status)
        except Exception as exc:
            logger.exception("Unhandled error serving %s %s", request.method, request.path)
            return web.json_response(
                {"error": str(exc) or type(exc).__name__, "kind": ErrorKind.BACKEND.value},
                status=self.backend_error_status,
            )


def create_app(
    connector: CrudConnector,
    resource: str = "todos",
    *,
    manage_connector: bool = False,
    backend_error_status: int = 500,
) -> web.Application:
    """Build the aiohttp application.

    Args:
        connector: Connector serving the resource.
        resource: Path segment of the collection, e.g. ``"todos"``.
        manage_connector: Open the connector on startup and close it on cleanup.
        backend_error_status: Status used for unclassified backend failures.

    Returns:
        Configured aiohttp web application.
    """
    routes = CrudRoutes(resource, backend_error_status=backend_error_status)
    app = web.Application(middlewares=[routes.error_middleware])
    app[CONNECTOR_KEY] = connector

    collection = f"/{resource}"
    item = f"/{resource}/{{id}}"
    app.router.add_get("/", routes.handle_root)
    app.router.add_post(collection, routes.handle_create)
    app.router.add_get(collection, routes.handle_list)
    app.router.add_get(item, routes.handle_get)
    app.router.add_put(item, routes.handle_update)
    app.router.add_delete(item, routes.handle_delete)

    if manage_connector:

        async def open_connector(app: web.Application) -> None:
            await app[CONNECTOR_KEY].open()

        async def close_connector(app: web.Application) -> None:
            await app[CONNECTOR_KEY].close()

        app.on_startup.append(open_connector)
        app.on_cleanup.append(close_connector)

    return app


@dataclass(frozen=True, slots=True)
class CrudHttpServerConfig:
    """Configuration for the REST facade server.

    Attributes:
        host: Host address to bind to (default: 127.0.0.1)
        port: Port number to listen on; 0 picks a free port (default: 3000)
        resource: Collection path segment (default: todos)
        backend_error_status: Status for unclassified backend errors (default: 500)
    """

    host: str = "127.0.0.1"
    port: int = 3000
    resource: str = "todos"
    backend_error_status: int = 500


@dataclass
class CrudHttpServer:
    """Runs the REST facade for one connector.

    The server does not own the connector: open it before ``start()`` and
    close it after ``stop()``.

    Example:
        ```python
        async with CrudConnector.from_config(config, TODO_SCHEMA) as todos:
            async with CrudHttpServer(todos, CrudHttpServerConfig(port=0)) as server:
                print(f"Serving at {server.base_url}")
                ...
        ```
    """

    connector: CrudConnector
    config: CrudHttpServerConfig = field(default_factory=CrudHttpServerConfig)
    _runner: web.AppRunner | None = field(default=None, init=False)
    _site: web.TCPSite | None = field(default=None, init=False)
    _bound_port: int | None = field(default=None, init=False)

    @property
    def base_url(self) -> str:
        """Get the base URL of the server."""
        port = self._bound_port or self.config.port
        return f"http://{self.config.host}:{port}"

    @property
    def resource_url(self) -> str:
        """URL of the resource collection."""
        return f"{self.base_url}/{self.config.resource}"

    async def start(self) -> None:
        """Start serving.

        Raises:
            RuntimeError: If the server is already running.
        """
        if self._runner is not None:
            raise RuntimeError("Server is already running")

        app = create_app(
            self.connector,
            self.config.resource,
            backend_error_status=self.config.backend_error_status,
        )
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        self._bound_port = self.config.port
        for address in self._runner.addresses:
            if isinstance(address, tuple) and len(address) >= 2:
                self._bound_port = address[1]
                break

        log_event(
            logger,
            logging.INFO,
            "http_server_started",
            url=self.base_url,
            resource=self.config.resource,
            backend=self.connector.backend,
        )

    async def stop(self) -> None:
        """Stop serving.

        Raises:
            RuntimeError: If the server is not running.
        """
        if self._runner is None:
            raise RuntimeError("Server is not running")

        await self._runner.cleanup()
        self._runner = None
        self._site = None
        self._bound_port = None
        log_event(logger, logging.INFO, "http_server_stopped")

    async def __aenter__(self) -> CrudHttpServer:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
