"""Fixed-delay driver for the orchestrator."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..constants import DEFAULT_POLLING_INTERVAL_SECONDS, DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
from .orchestrator import CycleReport, JobOrchestrator

logger = logging.getLogger(__name__)


class PollingScheduler:
    """Run ``orchestrator.run_cycle()`` repeatedly, waiting ``interval`` between cycles."""

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        interval_seconds: float = DEFAULT_POLLING_INTERVAL_SECONDS,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> CycleReport:
        report = await self.orchestrator.run_cycle()
        self.cycles += 1
        return report

    async def _loop(self) -> None:
        logger.info(f"Scheduler started, polling every {self.interval_seconds}s")
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Orchestration cycle failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")

    def start(self) -> asyncio.Task:
        if self.running:
            raise RuntimeError("Scheduler already running")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS) -> bool:
        """Stop after the in-flight cycle; cancel it if it outlives ``timeout``.

        Returns ``True`` on a graceful stop and ``False`` when forced.
        """
        self._stop_event.set()
        if self._task is None:
            return True
        task, self._task = self._task, None
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if done:
            return True
        logger.error(f"Scheduler did not stop within {timeout}s, cancelling in-flight cycle")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return False

    async def run_for(
        self,
        lifespan: Optional[float] = None,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
    ) -> None:
        """Run until ``lifespan`` seconds elapse (forever if ``None``), then stop."""
        task = self.start()
        try:
            if lifespan is None:
                await task
            else:
                await asyncio.wait({task}, timeout=lifespan)
        finally:
            await self.stop(shutdown_timeout)
