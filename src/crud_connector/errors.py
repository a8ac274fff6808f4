"""Classified error taxonomy shared by every backend adapter.

Adapters translate driver-native failures into one of these kinds at the point
of backend interaction. The connector passes them through untouched, so callers
see the same error shapes whichever store sits underneath.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar


class ErrorKind(str, Enum):
    """Kind of a classified connector error.

    Attributes:
        CONNECTION: Session could not be established or was lost.
        VALIDATION: Input failed a precondition.
        NOT_FOUND: Identity does not exist.
        BACKEND: Unclassified failure reported by the store.
        CLOSED: Operation attempted outside the ready state.
    """

    CONNECTION = "connection"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    BACKEND = "backend"
    CLOSED = "closed"


class ConnectorError(Exception):
    """Base class for all classified connector errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.BACKEND

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for JSON responses and structured logs."""
        return {"error": self.message, "kind": self.kind.value}


class StoreConnectionError(ConnectorError):
    """Raised when a session cannot be established or has been lost.

    Fatal to the connector instance that raised it: the caller must open a new
    connector.
    """

    kind = ErrorKind.CONNECTION

    def __init__(
        self,
        message: str,
        *,
        reason: str = "unreachable",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class ValidationError(ConnectorError, ValueError):
    """Raised when a payload, identity or filter fails a precondition."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field is not None:
            data["field"] = self.field
        return data


class NotFoundError(ConnectorError, LookupError):
    """Raised when read_one, update or delete targets a missing identity."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, *, record_id: Any = None) -> None:
        super().__init__(message)
        self.record_id = record_id


class BackendError(ConnectorError):
    """Unclassified failure from the underlying store.

    The original driver message is kept in ``message`` and the driver exception
    is chained as ``__cause__``.
    """

    kind = ErrorKind.BACKEND

    def __init__(
        self,
        message: str,
        *,
        timeout: bool = False,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.timeout = timeout

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.timeout:
            data["timeout"] = True
        return data


class ConnectorClosedError(ConnectorError, RuntimeError):
    """Raised when an operation is attempted on a connector that is not ready."""

    kind = ErrorKind.CLOSED


__all__ = [
    "BackendError",
    "ConnectorClosedError",
    "ConnectorError",
    "ErrorKind",
    "NotFoundError",
    "StoreConnectionError",
    "ValidationError",
]
