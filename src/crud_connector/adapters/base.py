"""Backend adapter protocol and the lifecycle shared by every adapter."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any, ClassVar, Protocol, runtime_checkable

from crud_connector.config import BackendKind, ConnectorConfig
from crud_connector.errors import (
    BackendError,
    ConnectorError,
    StoreConnectionError,
)
from crud_connector.handle import ConnectionHandle
from crud_connector.models import Record, RecordFilter
from crud_connector.schema import RecordSchema


@runtime_checkable
class BackendAdapter(Protocol):
    """Capability set every backend adapter implements.

    The connector only ever talks to this protocol, so callers and the
    connector never branch on the kind of store. Every method raises
    classified :class:`~crud_connector.errors.ConnectorError` subclasses only.
    """

    @property
    def name(self) -> str:
        """Backend name used in logs, e.g. ``"sqlite"``."""
        ...

    @property
    def supports_concurrency(self) -> bool:
        """Whether one session can serve concurrent requests."""
        ...

    @property
    def is_open(self) -> bool:
        """Whether a live connection handle is bound."""
        ...

    async def open(self, timeout: float | None = None) -> ConnectionHandle:
        """Acquire the connection handle."""
        ...

    async def release(self) -> None:
        """Release the connection handle. Idempotent."""
        ...

    async def create(self, payload: Mapping[str, Any]) -> Record:
        """Persist a new record and return it with its identity."""
        ...

    async def read_one(self, record_id: Any) -> Record:
        """Return one record or raise NotFoundError."""
        ...

    async def read_all(self, filter: RecordFilter | None = None) -> list[Record]:
        """Return every record matching the equality filter."""
        ...

    async def update(self, record_id: Any, partial: Mapping[str, Any]) -> Record:
        """Merge a partial into a record and return the result."""
        ...

    async def delete(self, record_id: Any) -> int:
        """Remove a record and return the number removed."""
        ...

    def classify(self, exc: BaseException) -> ConnectorError:
        """Map a driver exception to the error taxonomy."""
        ...


class AdapterBase(ABC):
    """Connection lifecycle and error translation shared by all adapters.

    Subclasses supply ``_connect``/``_disconnect`` for their driver and
    ``_classify_driver_error`` for its exceptions.
    """

    kind: ClassVar[BackendKind]
    supports_concurrency: ClassVar[bool] = False

    def __init__(self, config: ConnectorConfig, schema: RecordSchema | None = None) -> None:
        if config.backend is not self.kind:
            raise ValueError(
                f"{type(self).__name__} needs a {self.kind.value} config, "
                f"got {config.backend.value}"
            )
        self._config = config
        self._schema = schema
        self._handle: ConnectionHandle | None = None

    @property
    def name(self) -> str:
        """Backend name."""
        return self.kind.value

    @property
    def config(self) -> ConnectorConfig:
        """Configuration this adapter was built from."""
        return self._config

    @property
    def schema(self) -> RecordSchema | None:
        """Field policy, if any."""
        return self._schema

    @property
    def is_open(self) -> bool:
        """Whether a live connection handle is bound."""
        return self._handle is not None and not self._handle.is_released

    @property
    def _session(self) -> Any:
        if self._handle is None:
            raise StoreConnectionError(f"{self.name} adapter is not open", reason="released")
        return self._handle.session

    async def open(self, timeout: float | None = None) -> ConnectionHandle:
        """Open the connection handle, or return the one already open.

        Args:
            timeout: Deadline in seconds; defaults to ``config.connect_timeout``.

        Returns:
            The bound connection handle.

        Raises:
            StoreConnectionError: If the store is unreachable, rejects the
                credentials or does not answer in time.
        """
        if self._handle is not None and not self._handle.is_released:
            return self._handle
        handle = await ConnectionHandle.open(
            self._connect,
            self._disconnect,
            name=self.name,
            timeout=self._config.connect_timeout if timeout is None else timeout,
            classify=self.classify,
        )
        self._handle = handle
        try:
            await self._after_open()
        except BaseException:
            await handle.release()
            self._handle = None
            raise
        return handle

    async def release(self) -> None:
        """Release the connection handle. A second call is a no-op."""
        if self._handle is not None:
            await self._handle.release()

    async def _after_open(self) -> None:
        """Hook run once the session is established."""

    @abstractmethod
    async def _connect(self) -> Any:
        """Open and return a driver session."""
        ...

    @abstractmethod
    async def _disconnect(self, session: Any) -> None:
        """Close a driver session."""
        ...

    @abstractmethod
    def _classify_driver_error(self, exc: BaseException) -> ConnectorError | None:
        """Classify a driver-specific exception, or return None if unknown."""
        ...

    def classify(self, exc: BaseException) -> ConnectorError:
        """Map any exception raised while talking to the store to the taxonomy.

        Already classified errors pass through unchanged; anything the driver
        classifier does not recognise becomes a :class:`BackendError` that
        keeps the original message.
        """
        if isinstance(exc, ConnectorError):
            return exc
        error = self._classify_driver_error(exc)
        if error is not None:
            return error
        if isinstance(exc, TimeoutError):
            return BackendError(f"{self.name} operation timed out: {exc}", timeout=True, cause=exc)
        if isinstance(exc, OSError):
            return self._connection_error(exc)
        return BackendError(f"{self.name} error: {exc}", cause=exc)

    def _connection_error(self, exc: BaseException, reason: str | None = None) -> StoreConnectionError:
        if reason is None:
            reason = "lost" if self.is_open else "unreachable"
        return StoreConnectionError(f"{self.name} connection error: {exc}", reason=reason, cause=exc)

    @asynccontextmanager
    async def _translate(self) -> AsyncIterator[None]:
        """Classify every exception escaping the block."""
        try:
            yield
        except ConnectorError:
            raise
        except Exception as exc:
            raise self.classify(exc) from exc


__all__ = [
    "AdapterBase",
    "BackendAdapter",
]
