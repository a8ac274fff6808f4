"""Bounded-concurrency gate that every connector operation passes through."""

import asyncio
from dataclasses import dataclass
from typing import Self


@dataclass
class GateMetrics:
    """Snapshot of a gate's occupancy.

    Attributes:
        current_active: Operations holding a slot right now.
        peak_active: Highest ``current_active`` seen.
        total_acquisitions: Slots handed out since creation.
        waiting: Operations queued for a slot.
    """

    current_active: int
    peak_active: int
    total_acquisitions: int
    waiting: int = 0


class OperationGate:
    """
    Async context manager limiting how many operations run against one session.

    A width of 1 serializes operations, which single-session backends need so
    that requests never interleave on one connection. Pooled backends use the
    pool size. The gate never times out on its own: the caller's deadline
    cancels a queued entry, and a cancelled waiter leaves no slot behind.

    Example:
        ```python
        gate = OperationGate(max_concurrent=1)

        async def run(op):
            async with gate:
                # Only one of these executes at a time
                return await op()
        ```
    """

    def __init__(self, max_concurrent: int = 1) -> None:
        """Initialize the OperationGate.

        Raises:
            ValueError: If max_concurrent is less than 1.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._max_concurrent = max_concurrent
        self._current_active = 0
        self._peak_active = 0
        self._total_acquisitions = 0
        self._waiting = 0

    @property
    def max_concurrent(self) -> int:
        """Maximum number of concurrent operations allowed."""
        return self._max_concurrent

    @property
    def serializes(self) -> bool:
        """Whether the gate admits a single operation at a time."""
        return self._max_concurrent == 1

    async def __aenter__(self) -> Self:
        """Wait for a free slot and take it."""
        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1

        # Single event loop: the counters below need no extra lock.
        self._current_active += 1
        self._total_acquisitions += 1
        self._peak_active = max(self._peak_active, self._current_active)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Leave the gate and free the slot."""
        self._current_active -= 1
        self._semaphore.release()

    def get_metrics(self) -> GateMetrics:
        """Current occupancy of the gate."""
        return GateMetrics(
            current_active=self._current_active,
            peak_active=self._peak_active,
            total_acquisitions=self._total_acquisitions,
            waiting=self._waiting,
        )
