"""In-memory gateway for testing and dry runs."""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Tuple, Union

from ..errors import GatewayError
from ..models import AgentState
from .base import AgentGateway, AgentSnapshot, ConversationMessage, LaunchResult


class InMemoryAgentGateway(AgentGateway):
    """Scriptable fake agent API.

    Statuses queued with :meth:`script` are returned by successive
    ``get_status`` calls; the last one sticks. Agents with no script report
    ``FINISHED``. Every call is appended to :attr:`calls`.
    """

    def __init__(
        self,
        default_status: AgentState = AgentState.FINISHED,
        models: Optional[List[str]] = None,
        repositories: Optional[List[str]] = None,
    ) -> None:
        self.default_status = default_status
        self.models = models or ["default"]
        self.repositories = repositories or []
        self.calls: List[Tuple] = []
        self.agents: Dict[str, dict] = {}
        self.conversations: Dict[str, List[ConversationMessage]] = defaultdict(list)
        self.fail_next: Dict[str, Deque[GatewayError]] = defaultdict(deque)
        self._scripts: Dict[str, Deque[Union[AgentState, str]]] = defaultdict(deque)
        self._pending_scripts: Deque[List[Union[AgentState, str]]] = deque()
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    # -- scripting -------------------------------------------------------
    def script(self, agent_id: str, *statuses: Union[AgentState, str]) -> None:
        self._scripts[agent_id].extend(statuses)

    def script_next_launch(self, *statuses: Union[AgentState, str]) -> None:
        """Script statuses for the agent created by the next ``launch``."""
        self._pending_scripts.append(list(statuses))

    def fail(self, operation: str, error: Optional[GatewayError] = None) -> None:
        """Make the next call to ``operation`` raise ``error``."""
        self.fail_next[operation].append(error or GatewayError(f"{operation} failed", 503))

    def set_pr_url(self, agent_id: str, pr_url: str) -> None:
        self.agents[agent_id]["pr_url"] = pr_url

    def add_message(self, agent_id: str, text: str, type: str = "assistant_message") -> None:
        messages = self.conversations[agent_id]
        messages.append(ConversationMessage(id=f"msg-{len(messages) + 1}", type=type, text=text))

    def calls_to(self, operation: str) -> List[Tuple]:
        return [call for call in self.calls if call[0] == operation]

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_next[operation]:
            raise self.fail_next[operation].popleft()

    # -- gateway ---------------------------------------------------------
    async def launch(
        self, prompt: str, model: str, repository: str, auto_create_pr: bool = True
    ) -> LaunchResult:
        async with self._lock:
            self.calls.append(("launch", prompt, model, repository, auto_create_pr))
            self._maybe_fail("launch")
            agent_id = f"agent-{next(self._ids)}"
            self.agents[agent_id] = {
                "model": model,
                "repository": repository,
                "auto_create_pr": auto_create_pr,
                "pr_url": None,
                "deleted": False,
            }
            if self._pending_scripts:
                self._scripts[agent_id].extend(self._pending_scripts.popleft())
            self.add_message(agent_id, prompt, type="user_message")
            return LaunchResult(agent_id=agent_id, status=AgentState.CREATING)

    async def follow_up(self, agent_id: str, prompt: str) -> str:
        async with self._lock:
            self.calls.append(("follow_up", agent_id, prompt))
            self._maybe_fail("follow_up")
            if agent_id not in self.agents:
                raise GatewayError(f"Agent {agent_id} not found", 404)
            self.add_message(agent_id, prompt, type="user_message")
            return f"{agent_id}-followup-{len(self.calls_to('follow_up'))}"

    async def get_status(self, agent_id: str) -> AgentSnapshot:
        async with self._lock:
            self.calls.append(("get_status", agent_id))
            self._maybe_fail("get_status")
            if agent_id not in self.agents:
                raise GatewayError(f"Agent {agent_id} not found", 404)
            script = self._scripts[agent_id]
            if len(script) > 1:
                status = script.popleft()
            elif script:
                status = script[0]
            else:
                status = self.default_status
            return AgentSnapshot(
                agent_id=agent_id,
                status=status,
                pr_url=self.agents[agent_id]["pr_url"],
            )

    async def delete(self, agent_id: str) -> None:
        async with self._lock:
            self.calls.append(("delete", agent_id))
            self._maybe_fail("delete")
            if agent_id in self.agents:
                self.agents[agent_id]["deleted"] = True

    async def get_conversation(self, agent_id: str) -> List[ConversationMessage]:
        self.calls.append(("get_conversation", agent_id))
        self._maybe_fail("get_conversation")
        return list(self.conversations.get(agent_id, []))

    async def list_models(self) -> List[str]:
        return list(self.models)

    async def list_repositories(self) -> List[str]:
        return list(self.repositories)
