"""CRUD connector: the facade callers use to talk to exactly one store.

The connector owns one backend adapter (and through it one connection
handle), exposes the five-operation contract, enforces its lifecycle and
applies deadlines. It never retries and never reclassifies errors.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any, Self, TypeVar

from crud_connector.adapters.base import BackendAdapter
from crud_connector.adapters.registry import create_adapter
from crud_connector.config import ConnectorConfig
from crud_connector.errors import (
    BackendError,
    ConnectorClosedError,
    ConnectorError,
    ErrorKind,
)
from crud_connector.gate import GateMetrics, OperationGate
from crud_connector.models import (
    Operation,
    OperationRequest,
    OperationResult,
    Record,
    RecordFilter,
)
from crud_connector.observability import log_event
from crud_connector.schema import RecordSchema

T = TypeVar("T")

_QUIET_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.NOT_FOUND})


class ConnectorState(str, Enum):
    """Lifecycle state of a connector.

    Attributes:
        UNINITIALIZED: Created, no session yet.
        READY: Session open; operations allowed.
        CLOSED: Session released; terminal.
    """

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


class CrudConnector:
    """Uniform async CRUD access to one backend store.

    Operations run through an :class:`~crud_connector.gate.OperationGate`:
    backends whose session cannot multiplex requests get a gate of width 1,
    so concurrent callers are serialized; pooled backends get
    ``max_concurrency`` slots.

    Args:
        adapter: Backend adapter to drive. The connector takes ownership.
        open_timeout: Default deadline for :meth:`open` in seconds.
        operation_timeout: Default deadline for each operation in seconds.
        max_concurrency: Gate width for backends that support concurrency.

    Example:
        ```python
        config = ConnectorConfig.from_env()
        async with CrudConnector.from_config(config, TODO_SCHEMA) as todos:
            todo = await todos.create({"title": "Buy milk"})
            await todos.update(todo["id"], {"completed": True})
            await todos.delete(todo["id"])
        ```
    """

    def __init__(
        self,
        adapter: BackendAdapter,
        *,
        open_timeout: float | None = None,
        operation_timeout: float | None = None,
        max_concurrency: int = 10,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._adapter = adapter
        self._open_timeout = open_timeout
        self._operation_timeout = operation_timeout
        width = max_concurrency if adapter.supports_concurrency else 1
        self._gate = OperationGate(max_concurrent=width)
        self._state = ConnectorState.UNINITIALIZED
        self._state_lock = asyncio.Lock()
        self._logger = logging.getLogger(f"{__name__}.{adapter.name}")

    @classmethod
    def from_config(
        cls,
        config: ConnectorConfig,
        schema: RecordSchema | None = None,
        **adapter_kwargs: Any,
    ) -> Self:
        """Build a connector and its adapter from configuration.

        Args:
            config: Connector configuration.
            schema: Optional field policy for the table or collection.
            **adapter_kwargs: Extra adapter arguments (e.g. ``client_factory``).
        """
        return cls(
            create_adapter(config, schema, **adapter_kwargs),
            open_timeout=config.connect_timeout,
            operation_timeout=config.operation_timeout,
            max_concurrency=config.max_concurrency,
        )

    @property
    def state(self) -> ConnectorState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_ready(self) -> bool:
        """Whether operations are currently allowed."""
        return self._state is ConnectorState.READY

    @property
    def adapter(self) -> BackendAdapter:
        """The bound backend adapter."""
        return self._adapter

    @property
    def backend(self) -> str:
        """Backend name."""
        return self._adapter.name

    def get_gate_metrics(self) -> GateMetrics:
        """Concurrency metrics of the operation gate."""
        return self._gate.get_metrics()

    def _set_state(self, state: ConnectorState, trigger: str) -> None:
        old_state, self._state = self._state, state
        log_event(
            self._logger,
            logging.INFO,
            "connector_state_change",
            backend=self.backend,
            from_state=old_state.value,
            to_state=state.value,
            trigger=trigger,
        )

    # -- lifecycle ------------------------------------------------------------

    async def open(self, timeout: float | None = None) -> Self:
        """Open the connection handle and move to READY.

        Opening a READY connector is a no-op. A failed open leaves the
        connector UNINITIALIZED so the caller may try again.

        Args:
            timeout: Deadline in seconds; defaults to ``open_timeout``.

        Returns:
            Self, for chaining.

        Raises:
            StoreConnectionError: If the store is unreachable, rejects the
                credentials or the deadline passes.
            ConnectorClosedError: If the connector has been closed.
        """
        async with self._state_lock:
            if self._state is ConnectorState.READY:
                return self
            if self._state is ConnectorState.CLOSED:
                raise ConnectorClosedError(f"{self.backend} connector is closed")
            deadline = self._open_timeout if timeout is None else timeout
            await self._adapter.open(timeout=deadline)
            self._set_state(ConnectorState.READY, "open")
        return self

    async def close(self) -> None:
        """Release the connection handle and move to CLOSED. Idempotent."""
        async with self._state_lock:
            if self._state is ConnectorState.CLOSED:
                return
            self._set_state(ConnectorState.CLOSED, "close")
            await self._adapter.release()

    async def __aenter__(self) -> Self:
        return await self.open()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # -- operations -----------------------------------------------------------

    async def create(self, payload: Mapping[str, Any], *, timeout: float | None = None) -> Record:
        """Persist a new record.

        Not idempotent: every call creates a new identity.

        Returns:
            The stored record including its ``id``.

        Raises:
            ValidationError: If required fields are missing or invalid.
        """
        self._check_ready(Operation.CREATE)
        return await self._dispatch(OperationRequest.create(payload), timeout)

    async def read_one(self, record_id: Any, *, timeout: float | None = None) -> Record:
        """Fetch one record by identity.

        Raises:
            NotFoundError: If the identity does not exist.
        """
        self._check_ready(Operation.READ_ONE)
        return await self._dispatch(OperationRequest.read_one(record_id), timeout)

    async def read_all(
        self,
        filter: RecordFilter | None = None,
        *,
        timeout: float | None = None,
    ) -> list[Record]:
        """Fetch every record, optionally matching an equality filter.

        Ordering is backend-native.
        """
        self._check_ready(Operation.READ_ALL)
        return await self._dispatch(OperationRequest.read_all(filter), timeout)

    async def update(
        self,
        record_id: Any,
        partial: Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> Record:
        """Merge ``partial`` into a stored record; absent fields stay untouched.

        Raises:
            NotFoundError: If the identity does not exist.
        """
        self._check_ready(Operation.UPDATE)
        return await self._dispatch(OperationRequest.update(record_id, partial), timeout)

    async def delete(self, record_id: Any, *, timeout: float | None = None) -> None:
        """Remove a record.

        Raises:
            NotFoundError: If the identity does not exist.
        """
        self._check_ready(Operation.DELETE)
        await self._dispatch(OperationRequest.delete(record_id), timeout)

    async def execute(
        self,
        request: OperationRequest,
        *,
        timeout: float | None = None,
    ) -> OperationResult:
        """Run any request and return its result instead of raising.

        Classified errors, including :class:`ConnectorClosedError`, come back
        in ``OperationResult.error``.
        """
        start = time.perf_counter()
        try:
            value = await self._dispatch(request, timeout)
        except ConnectorError as exc:
            return OperationResult(
                request=request,
                error=exc,
                latency_ms=(time.perf_counter() - start) * 1000,
            )
        if request.operation is Operation.DELETE:
            value = True
        return OperationResult(
            request=request,
            value=value,
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    def _call_for(self, request: OperationRequest) -> Callable[[], Awaitable[Any]]:
        adapter = self._adapter
        match request.operation:
            case Operation.CREATE:
                return lambda: adapter.create(request.payload)
            case Operation.READ_ONE:
                return lambda: adapter.read_one(request.record_id)
            case Operation.READ_ALL:
                return lambda: adapter.read_all(request.filter)
            case Operation.UPDATE:
                return lambda: adapter.update(request.record_id, request.payload)
            case Operation.DELETE:
                return lambda: adapter.delete(request.record_id)
        raise ValueError(f"Unknown operation: {request.operation!r}")

    def _check_ready(self, operation: Operation) -> None:
        if self._state is not ConnectorState.READY:
            raise ConnectorClosedError(
                f"Cannot {operation.value}: {self.backend} connector is {self._state.value}"
            )

    async def _gated(self, call: Callable[[], Awaitable[T]]) -> T:
        async with self._gate:
            return await call()

    async def _dispatch(self, request: OperationRequest, timeout: float | None) -> Any:
        self._check_ready(request.operation)
        operation = request.operation.value

        deadline = self._operation_timeout if timeout is None else timeout
        call = self._call_for(request)
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(self._gated(call), timeout=deadline)
        except TimeoutError:
            log_event(
                self._logger,
                logging.WARNING,
                "operation_timeout",
                backend=self.backend,
                operation=operation,
                timeout=deadline,
            )
            raise BackendError(
                f"{operation} on {self.backend} timed out after {deadline}s", timeout=True
            ) from None
        except ConnectorError as exc:
            level = logging.INFO if exc.kind in _QUIET_KINDS else logging.WARNING
            log_event(
                self._logger,
                level,
                "operation_failed",
                backend=self.backend,
                operation=operation,
                latency_ms=round((time.perf_counter() - start) * 1000, 3),
                **exc.to_dict(),
            )
            raise

        log_event(
            self._logger,
            logging.DEBUG,
            "operation_completed",
            backend=self.backend,
            operation=operation,
            latency_ms=round((time.perf_counter() - start) * 1000, 3),
        )
        return result


__all__ = [
    "ConnectorState",
    "CrudConnector",
]
