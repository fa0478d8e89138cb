"""Decide when a submitted job, including its branches, has run to completion."""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models import AgentState, Job
from ..persistence.repository import JobRepository

logger = logging.getLogger(__name__)


class CompletionResult(BaseModel):
    completed: bool
    final_status: Optional[AgentState] = None
    children: List[Job] = Field(default_factory=list)

    @property
    def successful(self) -> bool:
        return self.completed and self.final_status is AgentState.FINISHED


def is_done(job: Job) -> bool:
    return job.result is not None or job.status.is_failed()


class CompletionChecker:
    def __init__(self, repository: JobRepository):
        self.repository = repository

    async def check(self, job_id: str) -> CompletionResult:
        job = await self.repository.get_job(job_id)
        if job is None:
            logger.warning(f"Job {job_id} disappeared while waiting for completion")
            return CompletionResult(completed=True, final_status=None)

        children = await self.repository.find_children(job_id)
        if not is_done(job):
            return CompletionResult(completed=False, children=children)
        if not all(is_done(child) for child in children):
            # a failed parent still waits for branches already running
            return CompletionResult(completed=False, children=children)

        final_status = job.status
        if final_status.is_successful():
            failed = next((c for c in children if not c.status.is_successful()), None)
            if failed is not None:
                final_status = failed.status
        logger.info(f"Job {job_id} completed with status {final_status.value}")
        return CompletionResult(completed=True, final_status=final_status, children=children)
