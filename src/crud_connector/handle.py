"""Connection handle: one live session to a backend store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Self

from crud_connector.errors import ConnectorError, StoreConnectionError
from crud_connector.observability import log_event

logger = logging.getLogger(__name__)

Classifier = Callable[[BaseException], ConnectorError]


def _default_classifier(exc: BaseException) -> ConnectorError:
    return StoreConnectionError(f"Failed to connect: {exc}", cause=exc)


class ConnectionHandle:
    """Owns one open session (a connection or a pool) and releases it once.

    Handles are created by :meth:`open` and are exclusively owned by the
    adapter that opened them. ``release()`` is idempotent.

    Example:
        ```python
        handle = await ConnectionHandle.open(
            lambda: aiosqlite.connect("todos.db"),
            lambda db: db.close(),
            name="sqlite",
            timeout=5.0,
        )
        async with handle:
            cursor = await handle.session.execute("SELECT 1")
        ```
    """

    def __init__(
        self,
        session: Any,
        release: Callable[[Any], Awaitable[None]],
        *,
        name: str,
    ) -> None:
        self._session = session
        self._release = release
        self._name = name
        self._released = False

    @classmethod
    async def open(
        cls,
        connect: Callable[[], Awaitable[Any]],
        release: Callable[[Any], Awaitable[None]],
        *,
        name: str,
        timeout: float | None = None,
        classify: Classifier | None = None,
    ) -> Self:
        """Establish a session, failing fast.

        The connect coroutine runs once; there is no retry.

        Args:
            connect: Coroutine factory returning the driver session.
            release: Coroutine function that closes a session.
            name: Backend name used in logs and error messages.
            timeout: Deadline in seconds, or None to wait indefinitely.
            classify: Maps a driver exception to a classified error.

        Returns:
            An open handle.

        Raises:
            StoreConnectionError: If the deadline passes or the backend is
                unreachable or rejects the credentials.
        """
        classifier = classify or _default_classifier
        try:
            session = await asyncio.wait_for(connect(), timeout=timeout)
        except TimeoutError:
            log_event(logger, logging.WARNING, "connection_failed", backend=name, reason="timeout")
            raise StoreConnectionError(
                f"Timed out connecting to {name} after {timeout}s", reason="timeout"
            ) from None
        except ConnectorError as exc:
            log_event(logger, logging.WARNING, "connection_failed", backend=name, error=exc.message)
            raise
        except Exception as exc:
            error = classifier(exc)
            if not isinstance(error, StoreConnectionError):
                error = StoreConnectionError(f"Failed to connect to {name}: {exc}", cause=exc)
            log_event(
                logger,
                logging.WARNING,
                "connection_failed",
                backend=name,
                reason=error.reason,
                error=error.message,
            )
            raise error from exc

        log_event(logger, logging.INFO, "connection_opened", backend=name)
        return cls(session, release, name=name)

    @property
    def name(self) -> str:
        """Backend name."""
        return self._name

    @property
    def is_released(self) -> bool:
        """Whether release() has been called."""
        return self._released

    @property
    def session(self) -> Any:
        """The live driver session.

        Raises:
            StoreConnectionError: If the handle has been released.
        """
        if self._released:
            raise StoreConnectionError(
                f"Connection handle for {self._name} has been released", reason="released"
            )
        return self._session

    async def release(self) -> None:
        """Close the session. A second call is a no-op."""
        if self._released:
            return
        self._released = True
        session, self._session = self._session, None
        try:
            await self._release(session)
        except Exception as exc:
            # The session is unusable either way; report and carry on.
            logger.warning(
                "Error while releasing %s connection: %s", self._name, exc, exc_info=True
            )
        log_event(logger, logging.INFO, "connection_released", backend=self._name)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.release()


__all__ = ["Classifier", "ConnectionHandle"]
