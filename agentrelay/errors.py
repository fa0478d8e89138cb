"""Exception hierarchy for agentrelay."""

from __future__ import annotations

from typing import Optional


class AgentRelayError(Exception):
    """Base class for all agentrelay errors."""


class GatewayError(AgentRelayError):
    """The remote agent API was unreachable or rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageError(AgentRelayError):
    """The job repository could not complete a read or write."""


class WorkflowParseError(AgentRelayError):
    """A workflow description is malformed or references missing prompts."""


class ConfigurationError(AgentRelayError):
    """Required configuration (API key, database URL...) is missing or invalid."""


class UnknownRemoteState(UserWarning):
    """Warning category for agent status values this version does not recognise."""
