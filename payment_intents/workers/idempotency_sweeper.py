"""
Idempotency sweeper background worker.

Periodically purges expired idempotency records. Lookups already treat
expired records as absent; the sweep only bounds memory.
"""
import asyncio
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class IdempotencySweeper:
    """Runs ``purge`` every ``interval_seconds`` until stopped."""

    def __init__(self, purge: Callable[[], int], interval_seconds: float = 3600.0):
        """
        Initialize sweeper.

        Args:
            purge: Removes expired records and returns how many were removed
            interval_seconds: Delay between sweeps
        """
        self.purge = purge
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional["asyncio.Task[None]"] = None

        logger.info("idempotency_sweeper_initialized", interval=interval_seconds)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stopped_unexpectedly(self) -> bool:
        """True if the background task exited without ``stop`` being called."""
        return self._task is not None and self._task.done()

    def sweep_once(self) -> int:
        """Run a single sweep."""
        removed = self.purge()
        logger.info("idempotency_sweep_completed", removed=removed)
        return removed

    async def run(self) -> None:
        """Sweep until ``stop`` is called."""
        self._running = True
        logger.info("idempotency_sweeper_started")

        try:
            while self._running:
                await asyncio.sleep(self.interval_seconds)
                if not self._running:
                    break
                try:
                    self.sweep_once()
                except Exception as e:
                    logger.error("idempotency_sweep_error", error=str(e), exc_info=True)

        finally:
            self._running = False
            logger.info("idempotency_sweeper_stopped")

    def start(self) -> "asyncio.Task[None]":
        """Run the sweeper as a background task on the current loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="idempotency-sweeper")
        return self._task

    async def stop(self) -> None:
        """Stop the sweeper and wait for its task to exit."""
        self._running = False
        logger.info("idempotency_sweeper_stop_requested")
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
