"""Tests for ConnectionHandle."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from crud_connector.errors import ConnectorError, StoreConnectionError, ValidationError
from crud_connector.handle import ConnectionHandle


class FakeSession:
    def __init__(self) -> None:
        self.closed = 0


async def _close(session: FakeSession) -> None:
    session.closed += 1


class TestOpen:
    @pytest.mark.asyncio
    async def test_open_returns_live_handle(self) -> None:
        session = FakeSession()

        async def connect() -> FakeSession:
            return session

        handle = await ConnectionHandle.open(connect, _close, name="fake", timeout=1.0)
        assert handle.session is session
        assert handle.name == "fake"
        assert not handle.is_released

    @pytest.mark.asyncio
    async def test_open_times_out(self) -> None:
        async def connect() -> FakeSession:
            await asyncio.sleep(1.0)
            return FakeSession()

        with pytest.raises(StoreConnectionError) as exc_info:
            await ConnectionHandle.open(connect, _close, name="slow", timeout=0.02)
        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_driver_error_classified(self) -> None:
        async def connect() -> FakeSession:
            raise OSError("connection refused")

        def classify(exc: BaseException) -> ConnectorError:
            return StoreConnectionError(f"refused: {exc}", reason="auth", cause=exc)

        with pytest.raises(StoreConnectionError) as exc_info:
            await ConnectionHandle.open(connect, _close, name="fake", classify=classify)
        assert exc_info.value.reason == "auth"
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_default_classifier(self) -> None:
        async def connect() -> FakeSession:
            raise OSError("no route to host")

        with pytest.raises(StoreConnectionError) as exc_info:
            await ConnectionHandle.open(connect, _close, name="fake")
        assert exc_info.value.reason == "unreachable"

    @pytest.mark.asyncio
    async def test_non_connection_classification_widened(self) -> None:
        """Whatever the classifier says, a failed open is a connection error."""

        async def connect() -> FakeSession:
            raise RuntimeError("odd driver failure")

        def classify(exc: BaseException) -> ConnectorError:
            return ValidationError(str(exc))

        with pytest.raises(StoreConnectionError):
            await ConnectionHandle.open(connect, _close, name="fake", classify=classify)

    @pytest.mark.asyncio
    async def test_open_logs_event(self, caplog: pytest.LogCaptureFixture) -> None:
        async def connect() -> FakeSession:
            return FakeSession()

        with caplog.at_level(logging.INFO, logger="crud_connector.handle"):
            await ConnectionHandle.open(connect, _close, name="fake")
        assert '"event": "connection_opened"' in caplog.text


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_is_idempotent(self) -> None:
        session = FakeSession()
        handle = ConnectionHandle(session, _close, name="fake")
        await handle.release()
        await handle.release()
        assert session.closed == 1
        assert handle.is_released

    @pytest.mark.asyncio
    async def test_session_after_release(self) -> None:
        handle = ConnectionHandle(FakeSession(), _close, name="fake")
        await handle.release()
        with pytest.raises(StoreConnectionError) as exc_info:
            _ = handle.session
        assert exc_info.value.reason == "released"

    @pytest.mark.asyncio
    async def test_release_error_does_not_propagate(self, caplog: pytest.LogCaptureFixture) -> None:
        async def broken_close(session: Any) -> None:
            raise RuntimeError("socket already gone")

        handle = ConnectionHandle(FakeSession(), broken_close, name="fake")
        with caplog.at_level(logging.WARNING, logger="crud_connector.handle"):
            await handle.release()
        assert handle.is_released
        assert "socket already gone" in caplog.text

    @pytest.mark.asyncio
    async def test_context_manager_releases(self) -> None:
        session = FakeSession()
        async with ConnectionHandle(session, _close, name="fake") as handle:
            assert handle.session is session
        assert session.closed == 1
