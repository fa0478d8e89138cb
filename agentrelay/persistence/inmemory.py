"""In-memory implementation of the job repository."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

from ..models import Job, Prompt
from .repository import JobRepository


class InMemoryJobRepository(JobRepository):
    """Store jobs and prompts in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._prompts: Dict[str, Dict[str, Prompt]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create_job(self, job: Job, prompts: Sequence[Prompt] = ()) -> None:
        async with self._lock:
            self._jobs[job.job_id] = job
            bucket = self._prompts.setdefault(job.job_id, {})
            for prompt in prompts:
                bucket[prompt.prompt_id] = prompt

    async def save(self, job: Job) -> None:
        async with self._lock:
            self._jobs[job.job_id] = job

    async def save_prompt(self, prompt: Prompt) -> None:
        async with self._lock:
            # dict keeps the insertion slot on update
            self._prompts.setdefault(prompt.job_id, {})[prompt.prompt_id] = prompt

    async def save_outcome(
        self,
        job: Optional[Job],
        prompts: Sequence[Prompt] = (),
        children: Sequence[Tuple[Job, Sequence[Prompt]]] = (),
    ) -> None:
        async with self._lock:
            for child, child_prompts in children:
                self._jobs[child.job_id] = child
                bucket = self._prompts.setdefault(child.job_id, {})
                for prompt in child_prompts:
                    bucket[prompt.prompt_id] = prompt
            for prompt in prompts:
                self._prompts.setdefault(prompt.job_id, {})[prompt.prompt_id] = prompt
            if job is not None:
                self._jobs[job.job_id] = job

    async def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def list_jobs(self) -> list[Job]:
        return sorted(self._jobs.values(), key=lambda j: j.created_at)

    async def find_active_jobs(self) -> list[Job]:
        return [job for job in await self.list_jobs() if job.needs_attention()]

    async def find_prompts(self, job_id: str) -> list[Prompt]:
        return list(self._prompts.get(job_id, {}).values())

    async def find_children(self, job_id: str) -> list[Job]:
        return [job for job in await self.list_jobs() if job.parent_job_id == job_id]

    async def delete_job_and_prompts(self, job_id: str) -> bool:
        async with self._lock:
            self._prompts.pop(job_id, None)
            return self._jobs.pop(job_id, None) is not None

    @property
    def jobs(self) -> List[Job]:
        return list(self._jobs.values())
