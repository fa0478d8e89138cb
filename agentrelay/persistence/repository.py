"""Repository abstraction for job and prompt persistence."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, Tuple

from ..models import Job, Prompt


class JobRepository(Protocol):
    """Protocol for job persistence backends.

    Backend failures raise :class:`~agentrelay.errors.StorageError`.
    """

    async def create_job(self, job: Job, prompts: Sequence[Prompt] = ()) -> None:
        """Persist a new job together with its prompts, atomically."""

    async def save(self, job: Job) -> None:
        """Insert or replace a job record."""

    async def save_prompt(self, prompt: Prompt) -> None:
        """Insert or replace a prompt record."""

    async def save_outcome(
        self,
        job: Optional[Job],
        prompts: Sequence[Prompt] = (),
        children: Sequence[Tuple[Job, Sequence[Prompt]]] = (),
    ) -> None:
        """Write new child jobs, updated prompts and the updated job in one transaction.

        Either every record is written or none is.
        """

    async def get_job(self, job_id: str) -> Job | None:
        """Retrieve a job by id."""

    async def list_jobs(self) -> list[Job]:
        """Return all jobs ordered by creation time."""

    async def find_active_jobs(self) -> list[Job]:
        """Return jobs that still need engine attention, oldest first."""

    async def find_prompts(self, job_id: str) -> list[Prompt]:
        """Return the prompts of ``job_id`` in creation order."""

    async def find_children(self, job_id: str) -> list[Job]:
        """Return jobs whose ``parent_job_id`` is ``job_id``."""

    async def delete_job_and_prompts(self, job_id: str) -> bool:
        """Remove a job and its prompts; ``False`` if it did not exist."""
