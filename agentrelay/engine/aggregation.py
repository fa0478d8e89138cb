"""Policies deciding when and how a parallel parent is finalized."""

from __future__ import annotations

import abc
import json
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict

from ..models import AgentState, Job


class AggregateDecision(BaseModel):
    """Final status and result for a parallel parent."""

    status: AgentState
    result: str

    model_config = ConfigDict(frozen=True)


class ParentAggregationPolicy(metaclass=abc.ABCMeta):
    """Decide a parallel parent's outcome from its children."""

    @abc.abstractmethod
    def aggregate(self, parent: Job, children: Sequence[Job]) -> Optional[AggregateDecision]:
        """Return a decision, or ``None`` while the parent must keep waiting."""
        raise NotImplementedError


def _child_done(child: Job) -> bool:
    # a child is done once finalized or failed; FINISHED alone may still have prompts left
    return child.result is not None or child.status.is_failed()


class AllChildrenTerminalPolicy(ParentAggregationPolicy):
    """Wait for every child; FINISHED only if every child finished."""

    def aggregate(self, parent: Job, children: Sequence[Job]) -> Optional[AggregateDecision]:
        if not children or not all(_child_done(c) for c in children):
            return None

        failed = [c for c in children if not c.status.is_successful()]
        status = failed[0].status if failed else AgentState.FINISHED
        summary = {c.job_id: c.result if c.result is not None else c.status.value for c in children}
        return AggregateDecision(status=status, result=json.dumps(summary))
