"""Structured workflow description produced by the loader."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models import BranchPlan, FanOutPlan, PromptRef, WorkflowShape


class PromptInfo(BaseModel):
    """A single prompt reference inside a workflow."""

    src_file: str
    type: str
    bind_result_exp: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def has_bind_result_exp(self) -> bool:
        return bool(self.bind_result_exp and self.bind_result_exp.strip())

    def to_ref(self) -> PromptRef:
        return PromptRef(
            source_ref=self.src_file,
            prompt_type=self.type,
            binds_result=self.has_bind_result_exp,
        )


class SequenceInfo(BaseModel):
    """A sequence of prompts, standalone or nested inside a parallel workflow."""

    model: Optional[str] = None
    repository: Optional[str] = None
    prompts: List[PromptInfo] = Field(default_factory=list)
    timeout_millis: Optional[int] = None
    fallback: Optional[PromptInfo] = None

    model_config = ConfigDict(frozen=True)

    @property
    def fallback_src(self) -> Optional[str]:
        return self.fallback.src_file if self.fallback else None

    def to_plan(self) -> BranchPlan:
        return BranchPlan(
            model=self.model,
            repository=self.repository,
            prompts=[p.to_ref() for p in self.prompts],
            timeout_millis=self.timeout_millis,
            fallback_src=self.fallback_src,
        )


class ParallelWorkflowData(BaseModel):
    """Fan-out prompt plus the sequences its branches run."""

    parallel_prompt: PromptInfo
    bind_result_type: Optional[str] = None
    sequences: List[SequenceInfo] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def has_bind_result_type(self) -> bool:
        return bool(self.bind_result_type and self.bind_result_type.strip())

    def to_plan(self) -> FanOutPlan:
        return FanOutPlan(
            bind_result_type=self.bind_result_type if self.has_bind_result_type else None,
            branches=[s.to_plan() for s in self.sequences],
        )


class WorkflowData(BaseModel):
    """Launch prompt, follow-ups, target and shape of a workflow.

    ``timeout_millis`` and ``fallback`` come from the top-level ``sequence`` or
    ``parallel`` element. Branches of a parallel workflow inherit them unless
    their own sequence overrides them.
    """

    launch_prompt: PromptInfo
    model: Optional[str] = None
    repository: Optional[str] = None
    update_prompts: List[PromptInfo] = Field(default_factory=list)
    parallel: Optional[ParallelWorkflowData] = None
    timeout_millis: Optional[int] = None
    fallback: Optional[PromptInfo] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_parallel(self) -> bool:
        return self.parallel is not None

    @property
    def shape(self) -> WorkflowShape:
        return WorkflowShape.PARALLEL if self.is_parallel else WorkflowShape.SEQUENCE

    @property
    def fallback_src(self) -> Optional[str]:
        return self.fallback.src_file if self.fallback else None

    @property
    def prompts(self) -> List[PromptInfo]:
        """Launch prompt followed by follow-ups, in dispatch order."""
        return [self.launch_prompt, *self.update_prompts]

    def referenced_prompts(self) -> List[PromptInfo]:
        """Every prompt file the workflow needs, including branch and fallback prompts."""
        refs = list(self.prompts)
        if self.fallback is not None:
            refs.append(self.fallback)
        if self.parallel is not None:
            for sequence in self.parallel.sequences:
                refs.extend(sequence.prompts)
                if sequence.fallback is not None:
                    refs.append(sequence.fallback)
        return refs
