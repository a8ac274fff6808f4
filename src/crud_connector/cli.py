"""Command line entry point.

Usage:
    crud-connector demo --url sqlite:///todos.db
    crud-connector demo --backend mongodb --database todo_app --table todos
    crud-connector serve --port 3000

Connection settings come from the flags, falling back to ``CRUD_*``
environment variables (see :meth:`ConnectorConfig.from_env`).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Mapping, Sequence
from typing import Any

from crud_connector.config import BackendKind, ConnectorConfig
from crud_connector.connector import CrudConnector
from crud_connector.errors import ConnectorError, NotFoundError
from crud_connector.http import CrudHttpServer, CrudHttpServerConfig
from crud_connector.schema import TODO_SCHEMA


def build_config(args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> ConnectorConfig:
    """Resolve the connector config from parsed flags over the environment."""
    if args.url:
        config = ConnectorConfig.from_url(args.url, table=args.table, database_name=args.database)
    else:
        config = ConnectorConfig.from_env(
            environ=dict(environ) if environ is not None else None,
            backend=args.backend,
            database_name=args.database,
            table_or_collection_name=args.table,
        )
    return config.with_options(options={**config.options, "create_table": True})


def _emit(step: str, **fields: Any) -> None:
    print(json.dumps({"step": step, **fields}, default=str))


async def run_demo(config: ConnectorConfig) -> None:
    """Insert, read, list, update and delete one to-do, then confirm it is gone."""
    async with CrudConnector.from_config(config, TODO_SCHEMA) as todos:
        _emit("connected", **config.describe())

        todo = await todos.create({"title": "Try the CRUD connector", "completed": False})
        _emit("create", record=todo)

        _emit("read_one", record=await todos.read_one(todo["id"]))
        _emit("read_all", records=await todos.read_all())

        updated = await todos.update(todo["id"], {"completed": True})
        _emit("update", record=updated)

        await todos.delete(todo["id"])
        _emit("delete", id=todo["id"])

        try:
            await todos.read_one(todo["id"])
        except NotFoundError:
            _emit("confirm_deleted", id=todo["id"], found=False)
        else:
            raise ConnectorError(f"Record {todo['id']} still present after delete")


async def run_server(config: ConnectorConfig, server_config: CrudHttpServerConfig) -> None:
    """Serve the REST facade until cancelled."""
    async with CrudConnector.from_config(config, TODO_SCHEMA) as todos:
        async with CrudHttpServer(todos, server_config) as server:
            print(f"Serving {config.backend.value} {server_config.resource} at {server.resource_url}")
            await asyncio.Event().wait()


def _add_connection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--url", type=str, help="Connection URL, e.g. sqlite:///todos.db")
    parser.add_argument(
        "--backend",
        type=str,
        choices=[kind.value for kind in BackendKind],
        help="Backend kind (default: CRUD_BACKEND or sqlite)",
    )
    parser.add_argument(
        "--database", type=str, help="Database name, or file path for sqlite"
    )
    parser.add_argument("--table", type=str, help="Table or collection name")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")


def create_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="crud-connector",
        description="Uniform CRUD access to relational and document stores",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    demo = commands.add_parser("demo", help="Run the create/read/update/delete walkthrough")
    _add_connection_arguments(demo)

    serve = commands.add_parser("serve", help="Serve the REST facade")
    _add_connection_arguments(serve)
    serve.add_argument(
        "--host", type=str, default="127.0.0.1", help="Bind address (default: 127.0.0.1)"
    )
    serve.add_argument("--port", type=int, default=3000, help="Bind port (default: 3000)")
    serve.add_argument(
        "--resource", type=str, default="todos", help="Collection path segment (default: todos)"
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    args = create_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        if args.command == "demo":
            asyncio.run(run_demo(config))
        else:
            server_config = CrudHttpServerConfig(
                host=args.host, port=args.port, resource=args.resource
            )
            asyncio.run(run_server(config, server_config))
    except ConnectorError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
