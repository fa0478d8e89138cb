"""Advance a single job one step through its lifecycle."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..errors import GatewayError
from ..gateway.base import AgentGateway
from ..models import AgentState, BranchPlan, Job, Prompt, WorkflowShape
from ..persistence.repository import JobRepository
from ..prompts import PromptLoader
from ..workflow.loader import infer_prompt_type
from .aggregation import AllChildrenTerminalPolicy, ParentAggregationPolicy
from .branches import conversation_text, extract_list, format_bound_value, is_list_type

logger = logging.getLogger(__name__)

LAUNCH = "launch"
POLL = "poll"
FOLLOW_UP = "follow_up"
FINALIZE = "finalize"
FAN_OUT = "fan_out"
AGGREGATE = "aggregate"
TIMEOUT = "timeout"
FALLBACK = "fallback"


class ChildJob(BaseModel):
    """A job to create together with its prompts."""

    job: Job
    prompts: List[Prompt] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class AdvanceOutcome(BaseModel):
    """Everything one advance changed; persisted by the orchestrator."""

    job: Optional[Job] = None
    prompts: List[Prompt] = Field(default_factory=list)
    children: List[ChildJob] = Field(default_factory=list)
    effects: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def changed(self) -> bool:
        return self.job is not None or bool(self.prompts) or bool(self.children)


def derive_pr_link(repository: Optional[str]) -> Optional[str]:
    """Return the pull request listing of a GitHub repository URL."""
    if not repository or "github.com" not in repository:
        return None
    base = repository.strip().rstrip("/")
    if base.endswith(".git"):
        base = base[: -len(".git")]
    return f"{base}/pulls"


def final_result(job: Job) -> str:
    return job.pr_url or derive_pr_link(job.repository) or f"agent:{job.agent_id}"


def _complete_sent(prompts: Sequence[Prompt], before: Optional[Prompt] = None) -> List[Prompt]:
    completed = []
    for prompt in prompts:
        if before is not None and prompt.prompt_id == before.prompt_id:
            break
        if prompt.is_sent:
            completed.append(prompt.mark_completed())
    return completed


class JobAdvancer:
    """Take the single next step for a job.

    The advancer talks to the gateway and reads from the repository but never
    writes; the returned :class:`AdvanceOutcome` describes the new state.
    """

    def __init__(
        self,
        gateway: AgentGateway,
        repository: JobRepository,
        prompt_loader: Optional[PromptLoader] = None,
        aggregation_policy: Optional[ParentAggregationPolicy] = None,
    ):
        self.gateway = gateway
        self.repository = repository
        self.prompt_loader = prompt_loader or PromptLoader()
        self.aggregation_policy = aggregation_policy or AllChildrenTerminalPolicy()

    async def advance(self, job: Job, prompts: Optional[Sequence[Prompt]] = None) -> AdvanceOutcome:
        if job.status.is_failed() or job.result is not None:
            return AdvanceOutcome()
        if prompts is None:
            prompts = await self.repository.find_prompts(job.job_id)

        if job.agent_id is None:
            return await self._launch(job, prompts)
        if job.status.is_active():
            if job.timeout_millis is not None and not job.fallback_executed:
                timed_out = await self._check_timeout(job)
                if timed_out is not None:
                    return timed_out
            return await self._poll(job)

        unsent = next((p for p in prompts if p.is_unsent), None)
        if unsent is not None:
            return await self._follow_up(job, prompts, unsent)
        if job.is_parallel_parent:
            children = await self.repository.find_children(job.job_id)
            if not children:
                return await self._fan_out(job, prompts)
            return self._aggregate(job, children)
        return self._finalize(job, prompts)

    # ------------------------------------------------------------------
    def _content(self, job: Job, prompt: Prompt) -> str:
        bound_value = (job.bound_value or "") if prompt.binds_result else None
        return self.prompt_loader.load(job.path, prompt.source_ref, prompt.prompt_type, bound_value)

    async def _launch(self, job: Job, prompts: Sequence[Prompt]) -> AdvanceOutcome:
        if not prompts:
            logger.error(f"Job {job.job_id} has no prompts, cannot launch an agent")
            return AdvanceOutcome()
        first = prompts[0]
        content = self._content(job, first)
        try:
            launched = await self.gateway.launch(
                content,
                job.model,
                job.repository,
                auto_create_pr=not job.is_parallel_parent,
            )
        except GatewayError as exc:
            logger.warning(f"Launch failed for job {job.job_id}, will retry: {exc}")
            return AdvanceOutcome()
        logger.info(f"Job {job.job_id} launched agent {launched.agent_id}")
        return AdvanceOutcome(
            job=job.with_agent(launched.agent_id, AgentState.CREATING),
            prompts=[first.mark_sent()],
            effects=[LAUNCH],
        )

    async def _poll(self, job: Job) -> AdvanceOutcome:
        try:
            snapshot = await self.gateway.get_status(job.agent_id)
        except GatewayError as exc:
            logger.warning(f"Status check failed for job {job.job_id}: {exc}")
            return AdvanceOutcome()
        status = AgentState.parse(snapshot.status)
        pr_url = snapshot.pr_url or job.pr_url
        if status == job.status and pr_url == job.pr_url:
            return AdvanceOutcome(effects=[POLL])
        logger.info(f"Job {job.job_id} status {job.status.value} -> {status.value}")
        return AdvanceOutcome(job=job.with_status(status).with_pr_url(pr_url), effects=[POLL])

    async def _check_timeout(self, job: Job) -> Optional[AdvanceOutcome]:
        """Send the fallback prompt once the workflow timer has run out.

        Returns ``None`` when the job has not timed out and should be polled.
        """
        if job.workflow_start_time is None:
            logger.warning(f"Job {job.job_id} has a timeout but no start time, starting it now")
            return AdvanceOutcome(job=job.with_workflow_start_time(), effects=[TIMEOUT])
        if not job.has_timed_out():
            return None

        elapsed = job.elapsed_millis()
        if not job.fallback_src:
            logger.warning(
                f"Job {job.job_id} timed out after {elapsed}ms "
                f"(limit {job.timeout_millis}ms) with no fallback, marking as failed"
            )
            return AdvanceOutcome(job=job.with_status(AgentState.ERROR), effects=[TIMEOUT])

        content = self.prompt_loader.load(
            job.path,
            job.fallback_src,
            infer_prompt_type(job.fallback_src),
            job.bound_value,
        )
        try:
            await self.gateway.follow_up(job.agent_id, content)
        except GatewayError as exc:
            logger.warning(f"Fallback for job {job.job_id} failed, will retry: {exc}")
            return AdvanceOutcome()
        logger.warning(
            f"Job {job.job_id} timed out after {elapsed}ms (limit {job.timeout_millis}ms), "
            f"sent fallback prompt {job.fallback_src}"
        )
        return AdvanceOutcome(job=job.with_fallback_executed(), effects=[TIMEOUT, FALLBACK])

    async def _follow_up(
        self, job: Job, prompts: Sequence[Prompt], prompt: Prompt
    ) -> AdvanceOutcome:
        content = self._content(job, prompt)
        try:
            await self.gateway.follow_up(job.agent_id, content)
        except GatewayError as exc:
            logger.warning(f"Follow-up {prompt.prompt_id} failed for job {job.job_id}: {exc}")
            return AdvanceOutcome()
        logger.info(f"Job {job.job_id} sent follow-up prompt {prompt.prompt_id}")
        return AdvanceOutcome(
            job=job.with_status(AgentState.RUNNING),
            prompts=[*_complete_sent(prompts, before=prompt), prompt.mark_sent()],
            effects=[FOLLOW_UP],
        )

    def _finalize(self, job: Job, prompts: Sequence[Prompt]) -> AdvanceOutcome:
        result = final_result(job)
        logger.info(f"Job {job.job_id} finished with result {result}")
        return AdvanceOutcome(
            job=job.with_result(result),
            prompts=_complete_sent(prompts),
            effects=[FINALIZE],
        )

    # ------------------------------------------------------------------
    async def _fan_out(self, job: Job, prompts: Sequence[Prompt]) -> AdvanceOutcome:
        plan = job.fan_out
        if plan is None or not plan.branches:
            logger.error(f"Parallel job {job.job_id} has no branches to run")
            return AdvanceOutcome(job=job.with_status(AgentState.ERROR), effects=[FAN_OUT])

        if not plan.bind_result_type:
            children = [self._child(job, branch) for branch in plan.branches]
        elif is_list_type(plan.bind_result_type):
            try:
                messages = await self.gateway.get_conversation(job.agent_id)
            except GatewayError as exc:
                logger.warning(f"Could not fetch conversation for job {job.job_id}: {exc}")
                return AdvanceOutcome()
            values = extract_list(conversation_text(messages), plan.bind_result_type)
            if values is None:
                logger.error(
                    f"No {plan.bind_result_type} result found in conversation of job {job.job_id}"
                )
                return AdvanceOutcome(
                    job=job.with_status(AgentState.ERROR),
                    prompts=_complete_sent(prompts),
                    effects=[FAN_OUT],
                )
            if not values:
                logger.info(f"Job {job.job_id} produced an empty list, nothing to fan out")
                return AdvanceOutcome(
                    job=job.with_result("{}"),
                    prompts=_complete_sent(prompts),
                    effects=[FAN_OUT, AGGREGATE],
                )
            branch = plan.branches[0]
            children = [
                self._child(job, branch, format_bound_value(value)) for value in values
            ]
        else:
            logger.error(f"Unsupported bind result type {plan.bind_result_type!r} on job {job.job_id}")
            return AdvanceOutcome(job=job.with_status(AgentState.ERROR), effects=[FAN_OUT])

        logger.info(f"Job {job.job_id} fanned out into {len(children)} child jobs")
        return AdvanceOutcome(
            job=job.touch(),
            prompts=_complete_sent(prompts),
            children=children,
            effects=[FAN_OUT],
        )

    @staticmethod
    def _child(parent: Job, branch: BranchPlan, bound_value: Optional[str] = None) -> ChildJob:
        child = Job(
            path=parent.path,
            model=branch.model or parent.model,
            repository=branch.repository or parent.repository,
            parent_job_id=parent.job_id,
            workflow_shape=WorkflowShape.SEQUENCE,
            bound_value=bound_value,
            timeout_millis=branch.timeout_millis or parent.timeout_millis,
            fallback_src=branch.fallback_src or parent.fallback_src,
        )
        return ChildJob(
            job=child,
            prompts=[Prompt.from_ref(child.job_id, ref) for ref in branch.prompts],
        )

    def _aggregate(self, job: Job, children: Sequence[Job]) -> AdvanceOutcome:
        decision = self.aggregation_policy.aggregate(job, children)
        if decision is None:
            return AdvanceOutcome()
        logger.info(f"Parallel job {job.job_id} completed with status {decision.status.value}")
        return AdvanceOutcome(
            job=job.with_result(decision.result, decision.status),
            effects=[AGGREGATE],
        )
