"""Drive every active job one step per cycle."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from pydantic import BaseModel

from ..models import Job
from ..persistence.repository import JobRepository
from .advance import AdvanceOutcome, JobAdvancer

logger = logging.getLogger(__name__)


class CycleReport(BaseModel):
    """Counters describing one orchestration cycle."""

    examined: int = 0
    advanced: int = 0
    skipped: int = 0
    failed: int = 0
    aborted: bool = False


class JobOrchestrator:
    """Advance active jobs, isolating failures per job."""

    def __init__(
        self,
        repository: JobRepository,
        advancer: JobAdvancer,
        max_concurrent_advances: int = 1,
    ):
        self.repository = repository
        self.advancer = advancer
        self.max_concurrent_advances = max(1, max_concurrent_advances)
        self._in_flight: Set[str] = set()

    async def persist(self, outcome: AdvanceOutcome) -> None:
        """Write an advance outcome in one repository transaction.

        A failed write leaves the job, its prompts and its children as they
        were, so the next cycle repeats the same step.
        """
        await self.repository.save_outcome(
            outcome.job,
            outcome.prompts,
            [(child.job, child.prompts) for child in outcome.children],
        )

    async def advance_job(self, job: Job) -> Optional[AdvanceOutcome]:
        """Advance and persist a single job; ``None`` if it was already in flight."""
        if job.job_id in self._in_flight:
            logger.debug(f"Job {job.job_id} already being advanced, skipping")
            return None
        self._in_flight.add(job.job_id)
        try:
            # the listing may be stale if another cycle advanced this job meanwhile
            current = await self.repository.get_job(job.job_id)
            if current is None or not current.needs_attention():
                return AdvanceOutcome()
            outcome = await self.advancer.advance(current)
            if outcome.changed:
                await self.persist(outcome)
            return outcome
        finally:
            self._in_flight.discard(job.job_id)

    async def _advance_safely(self, job: Job, report: CycleReport) -> None:
        try:
            outcome = await self.advance_job(job)
        except Exception:
            report.failed += 1
            logger.exception(f"Error advancing job {job.job_id}")
            return
        if outcome is None:
            report.skipped += 1
        elif outcome.changed:
            report.advanced += 1

    async def run_cycle(self) -> CycleReport:
        report = CycleReport()
        try:
            jobs = await self.repository.find_active_jobs()
        except Exception:
            logger.exception("Could not load active jobs, skipping cycle")
            report.aborted = True
            return report

        report.examined = len(jobs)
        if self.max_concurrent_advances == 1:
            for job in jobs:
                await self._advance_safely(job, report)
        else:
            semaphore = asyncio.Semaphore(self.max_concurrent_advances)

            async def bounded(job: Job) -> None:
                async with semaphore:
                    await self._advance_safely(job, report)

            await asyncio.gather(*(bounded(job) for job in jobs))

        if jobs:
            logger.info(
                f"Cycle done: {report.examined} active, {report.advanced} advanced, "
                f"{report.skipped} skipped, {report.failed} failed"
            )
        return report
