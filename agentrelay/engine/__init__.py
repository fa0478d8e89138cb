"""Job orchestration engine."""

from .advance import AdvanceOutcome, ChildJob, JobAdvancer, derive_pr_link, final_result
from .aggregation import AggregateDecision, AllChildrenTerminalPolicy, ParentAggregationPolicy
from .deletion import JobDeleter
from .orchestrator import CycleReport, JobOrchestrator
from .scheduler import PollingScheduler

__all__ = [
    "AdvanceOutcome",
    "AggregateDecision",
    "AllChildrenTerminalPolicy",
    "ChildJob",
    "CycleReport",
    "JobAdvancer",
    "JobDeleter",
    "JobOrchestrator",
    "ParentAggregationPolicy",
    "PollingScheduler",
    "derive_pr_link",
    "final_result",
]
