"""Base gateway interface for remote coding agents."""

from __future__ import annotations

import abc
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ..models import AgentState


class LaunchResult(BaseModel):
    """Handle returned when an agent is launched."""

    agent_id: str
    status: AgentState = AgentState.CREATING
    branch_name: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class AgentSnapshot(BaseModel):
    """Point-in-time view of a remote agent."""

    agent_id: str
    status: AgentState
    pr_url: Optional[str] = None
    branch_name: Optional[str] = None
    summary: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value):
        return AgentState.parse(value)


class ConversationMessage(BaseModel):
    """One entry of an agent conversation (``user_message`` or ``assistant_message``)."""

    id: str
    type: str
    text: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class AgentGateway(metaclass=abc.ABCMeta):
    """Abstract client for an agent-management API.

    Every failure surfaces as :class:`~agentrelay.errors.GatewayError`.
    """

    async def connect(self) -> None:
        """Open underlying connections (no-op by default)."""
        pass

    async def close(self) -> None:
        """Release underlying connections (no-op by default)."""
        pass

    async def __aenter__(self) -> "AgentGateway":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @abc.abstractmethod
    async def launch(
        self, prompt: str, model: str, repository: str, auto_create_pr: bool = True
    ) -> LaunchResult:
        """Start a new agent working on ``repository`` with ``prompt``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def follow_up(self, agent_id: str, prompt: str) -> str:
        """Send an additional instruction to a running agent, returning its id."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_status(self, agent_id: str) -> AgentSnapshot:
        """Fetch the current state of ``agent_id``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, agent_id: str) -> None:
        """Delete ``agent_id``. Deleting an agent that is already gone succeeds."""
        raise NotImplementedError

    async def get_conversation(self, agent_id: str) -> List[ConversationMessage]:
        """Return the agent conversation (empty if unsupported)."""
        return []

    async def list_models(self) -> List[str]:
        return []

    async def list_repositories(self) -> List[str]:
        return []
