"""Turn a workflow file into a persisted job."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from ..constants import DEFAULT_MODEL, DEFAULT_REPOSITORY
from ..errors import ConfigurationError, WorkflowParseError
from ..gateway.base import AgentGateway
from ..models import Job, Prompt
from ..persistence.repository import JobRepository
from ..prompts import PromptLoader
from ..workflow import WorkflowData, load_workflow

logger = logging.getLogger(__name__)


class JobSubmitter:
    """Validate a workflow and store its job and prompts.

    When a gateway is given, the workflow's model is checked against the
    models it lists.
    """

    def __init__(
        self,
        repository: JobRepository,
        prompt_loader: Optional[PromptLoader] = None,
        gateway: Optional[AgentGateway] = None,
    ):
        self.repository = repository
        self.prompt_loader = prompt_loader or PromptLoader()
        self.gateway = gateway

    def validate_prompts(self, workflow_path: str, workflow: WorkflowData) -> List[str]:
        errors = []
        for info in workflow.referenced_prompts():
            try:
                self.prompt_loader.load(workflow_path, info.src_file, info.type)
            except WorkflowParseError as exc:
                errors.append(str(exc))
        return errors

    async def _validate_model(self, model: str) -> None:
        if self.gateway is None:
            return
        available = await self.gateway.list_models()
        if available and model not in available:
            raise ConfigurationError(
                f"Model '{model}' is not available. Available models: {', '.join(available)}"
            )

    async def submit(self, path: str | Path) -> Job:
        workflow_path = str(Path(path).resolve())
        logger.info(f"Creating new job from workflow file: {workflow_path}")
        workflow = load_workflow(workflow_path)

        errors = self.validate_prompts(workflow_path, workflow)
        if errors:
            raise WorkflowParseError("Prompt validation failed:\n" + "\n".join(errors))

        model = workflow.model or DEFAULT_MODEL
        repository = workflow.repository or DEFAULT_REPOSITORY
        await self._validate_model(model)

        job = Job(
            path=workflow_path,
            model=model,
            repository=repository,
            workflow_shape=workflow.shape,
            fan_out=workflow.parallel.to_plan() if workflow.parallel else None,
            timeout_millis=workflow.timeout_millis,
            fallback_src=workflow.fallback_src,
        )
        infos = [workflow.launch_prompt] if workflow.is_parallel else workflow.prompts
        prompts = [Prompt.from_ref(job.job_id, info.to_ref()) for info in infos]
        await self.repository.create_job(job, prompts)
        logger.info(f"Job {job.job_id} created with {len(prompts)} prompt(s)")
        return job
