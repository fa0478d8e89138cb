"""Persisted records: jobs, prompts and the agent lifecycle they track."""

from __future__ import annotations

import logging
import uuid
import warnings
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import PROMPT_COMPLETED, PROMPT_SENT, PROMPT_UNKNOWN
from .errors import UnknownRemoteState

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class AgentState(str, Enum):
    """Lifecycle of a remote agent, plus ``UNKNOWN`` before any remote call."""

    CREATING = "CREATING"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    ERROR = "ERROR"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "AgentState":
        """Map any external status representation onto an ``AgentState``.

        Accepts ``None``, strings, other enums and ``AgentState`` itself.
        Values from older record formats are folded onto the canonical set;
        anything else becomes ``UNKNOWN`` instead of raising.
        """
        if isinstance(value, AgentState):
            return value
        if value is None:
            return cls.UNKNOWN
        if isinstance(value, Enum):
            raw = value.value if isinstance(value.value, str) else value.name
        else:
            raw = str(value)
        key = raw.strip().upper()
        if not key:
            return cls.UNKNOWN
        if key in cls.__members__:
            return cls[key]
        if key in _LEGACY_STATES:
            return _LEGACY_STATES[key]
        warnings.warn(f"Unrecognised agent status {raw!r}", UnknownRemoteState, stacklevel=2)
        logger.warning(f"Unrecognised agent status {raw!r}, treating as UNKNOWN")
        return cls.UNKNOWN

    def is_terminal(self) -> bool:
        return self in (AgentState.FINISHED, AgentState.ERROR, AgentState.EXPIRED)

    def is_successful(self) -> bool:
        return self is AgentState.FINISHED

    def is_failed(self) -> bool:
        return self in (AgentState.ERROR, AgentState.EXPIRED)

    def is_active(self) -> bool:
        return not self.is_terminal()


_LEGACY_STATES = {
    "PENDING": AgentState.CREATING,
    "COMPLETED": AgentState.FINISHED,
    "FAILED": AgentState.ERROR,
    "CANCELLED": AgentState.EXPIRED,
}


class WorkflowShape(str, Enum):
    SEQUENCE = "SEQUENCE"
    PARALLEL = "PARALLEL"


class PromptRef(BaseModel):
    """Reference to a prompt file as declared in a workflow."""

    model_config = ConfigDict(frozen=True)

    source_ref: str
    prompt_type: str = "markdown"
    binds_result: bool = False


class BranchPlan(BaseModel):
    """Prompts and target of one parallel branch, stored on the parent job."""

    model_config = ConfigDict(frozen=True)

    model: Optional[str] = None
    repository: Optional[str] = None
    prompts: List[PromptRef] = Field(default_factory=list)
    timeout_millis: Optional[int] = None
    fallback_src: Optional[str] = None


class FanOutPlan(BaseModel):
    """Everything a PARALLEL parent needs to spawn its children later."""

    model_config = ConfigDict(frozen=True)

    bind_result_type: Optional[str] = None
    branches: List[BranchPlan] = Field(default_factory=list)


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)

    created_at: datetime = Field(default_factory=utcnow)
    last_update: datetime = Field(default_factory=utcnow)

    def _replace(self, **changes: Any):
        # last_update never moves backwards, even if the clock does
        changes["last_update"] = max(utcnow(), self.last_update)
        return self.model_copy(update=changes)


class Job(_Record):
    """One execution of a workflow, or one branch of a parallel workflow."""

    job_id: str = Field(default_factory=new_id)
    path: str
    agent_id: Optional[str] = None
    model: str
    repository: str
    status: AgentState = AgentState.UNKNOWN
    parent_job_id: Optional[str] = None
    result: Optional[str] = None
    workflow_shape: Optional[WorkflowShape] = None
    bound_value: Optional[str] = None
    fan_out: Optional[FanOutPlan] = None
    pr_url: Optional[str] = None
    timeout_millis: Optional[int] = None
    workflow_start_time: Optional[datetime] = None
    fallback_src: Optional[str] = None
    fallback_executed: bool = False

    @model_validator(mode="after")
    def _children_are_leaves(self) -> "Job":
        if self.parent_job_id is not None and self.workflow_shape is WorkflowShape.PARALLEL:
            raise ValueError("child jobs cannot fan out")
        return self

    @property
    def is_child(self) -> bool:
        return self.parent_job_id is not None

    @property
    def is_parallel_parent(self) -> bool:
        return self.workflow_shape is WorkflowShape.PARALLEL and not self.is_child

    def needs_attention(self) -> bool:
        """Return ``True`` while the engine still has work to do for this job."""
        return self.result is None and not self.status.is_failed()

    def with_agent(self, agent_id: str, status: AgentState = AgentState.CREATING) -> "Job":
        if self.agent_id is not None:
            raise ValueError(f"Job {self.job_id} already has agent {self.agent_id}")
        changes: dict = {"agent_id": agent_id, "status": status}
        if self.timeout_millis is not None:
            changes["workflow_start_time"] = utcnow()
        return self._replace(**changes)

    def with_workflow_start_time(self, started: Optional[datetime] = None) -> "Job":
        return self._replace(workflow_start_time=started or utcnow())

    def with_fallback_executed(self) -> "Job":
        return self._replace(fallback_executed=True, status=AgentState.RUNNING)

    def elapsed_millis(self, now: Optional[datetime] = None) -> int:
        """Milliseconds since the workflow timer started, ``0`` if it has not."""
        if self.workflow_start_time is None:
            return 0
        return int(((now or utcnow()) - self.workflow_start_time).total_seconds() * 1000)

    def has_timed_out(self, now: Optional[datetime] = None) -> bool:
        return (
            self.timeout_millis is not None
            and self.workflow_start_time is not None
            and self.elapsed_millis(now) >= self.timeout_millis
        )

    def with_status(self, status: AgentState) -> "Job":
        return self._replace(status=status)

    def with_result(self, result: str, status: Optional[AgentState] = None) -> "Job":
        return self._replace(result=result, status=status or self.status)

    def with_pr_url(self, pr_url: Optional[str]) -> "Job":
        return self._replace(pr_url=pr_url)

    def touch(self) -> "Job":
        return self._replace()


class Prompt(_Record):
    """One instruction sent to the agent of ``job_id``."""

    prompt_id: str = Field(default_factory=new_id)
    job_id: str
    source_ref: str
    status: str = PROMPT_UNKNOWN
    prompt_type: str = "markdown"
    binds_result: bool = False

    @property
    def is_unsent(self) -> bool:
        return self.status == PROMPT_UNKNOWN

    @property
    def is_sent(self) -> bool:
        return self.status == PROMPT_SENT

    def with_status(self, status: str) -> "Prompt":
        return self._replace(status=status)

    def mark_sent(self) -> "Prompt":
        return self.with_status(PROMPT_SENT)

    def mark_completed(self) -> "Prompt":
        return self.with_status(PROMPT_COMPLETED)

    @classmethod
    def from_ref(cls, job_id: str, ref: PromptRef) -> "Prompt":
        return cls(
            job_id=job_id,
            source_ref=ref.source_ref,
            prompt_type=ref.prompt_type,
            binds_result=ref.binds_result,
        )
