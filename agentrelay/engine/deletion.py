"""Cascading deletion of a job, its descendants and their remote agents."""

from __future__ import annotations

import logging
from collections import deque
from typing import List

from ..errors import GatewayError
from ..gateway.base import AgentGateway
from ..models import Job
from ..persistence.repository import JobRepository

logger = logging.getLogger(__name__)


class JobDeleter:
    def __init__(self, repository: JobRepository, gateway: AgentGateway):
        self.repository = repository
        self.gateway = gateway

    async def collect(self, job_id: str) -> List[Job]:
        """Return ``job_id`` and all of its descendants in breadth-first order."""
        root = await self.repository.get_job(job_id)
        if root is None:
            return []
        collected: List[Job] = []
        seen = set()
        queue = deque([root])
        while queue:
            job = queue.popleft()
            if job.job_id in seen:
                continue
            seen.add(job.job_id)
            collected.append(job)
            queue.extend(await self.repository.find_children(job.job_id))
        return collected

    async def delete(self, job_id: str) -> int:
        """Delete the job tree rooted at ``job_id``; returns the number of jobs removed."""
        jobs = await self.collect(job_id)
        if not jobs:
            logger.info(f"Job {job_id} not found, nothing to delete")
            return 0

        for job in jobs:
            if job.agent_id is None:
                continue
            try:
                await self.gateway.delete(job.agent_id)
            except GatewayError as exc:
                logger.warning(f"Could not delete agent {job.agent_id} of job {job.job_id}: {exc}")

        removed = 0
        for job in reversed(jobs):
            if await self.repository.delete_job_and_prompts(job.job_id):
                removed += 1
        logger.info(f"Deleted {removed} job(s) rooted at {job_id}")
        return removed
