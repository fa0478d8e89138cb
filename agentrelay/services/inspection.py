"""Read-only views over jobs for operators."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from ..engine.advance import derive_pr_link
from ..gateway.base import AgentGateway, ConversationMessage
from ..models import Job, Prompt
from ..persistence.repository import JobRepository


class JobDetails(BaseModel):
    job: Job
    prompts: List[Prompt] = Field(default_factory=list)
    children: List[Job] = Field(default_factory=list)


class JobInspector:
    def __init__(self, repository: JobRepository, gateway: Optional[AgentGateway] = None):
        self.repository = repository
        self.gateway = gateway

    async def list_jobs(self) -> List[Job]:
        return await self.repository.list_jobs()

    async def details(self, job_id: str) -> Optional[JobDetails]:
        job = await self.repository.get_job(job_id)
        if job is None:
            return None
        return JobDetails(
            job=job,
            prompts=await self.repository.find_prompts(job_id),
            children=await self.repository.find_children(job_id),
        )

    async def logs(self, job_id: str) -> Optional[List[ConversationMessage]]:
        """Conversation of the job's agent; ``None`` for an unknown job."""
        job = await self.repository.get_job(job_id)
        if job is None:
            return None
        if job.agent_id is None or self.gateway is None:
            return []
        return await self.gateway.get_conversation(job.agent_id)

    async def pr_link(self, job_id: str) -> Optional[str]:
        job = await self.repository.get_job(job_id)
        if job is None:
            return None
        if job.result and job.result.startswith("http"):
            return job.result
        return job.pr_url or derive_pr_link(job.repository)
