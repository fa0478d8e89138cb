"""Application services used by the CLI."""

from .completion import CompletionChecker, CompletionResult
from .inspection import JobDetails, JobInspector
from .submission import JobSubmitter

__all__ = [
    "CompletionChecker",
    "CompletionResult",
    "JobDetails",
    "JobInspector",
    "JobSubmitter",
]
