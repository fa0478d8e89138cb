"""Gateway for the Cursor Cloud Agents HTTP API."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx

from ..constants import DEFAULT_API_BASE_URL, DEFAULT_API_TIMEOUT_SECONDS, DEFAULT_SOURCE_REF
from ..errors import GatewayError
from ..models import AgentState
from .base import AgentGateway, AgentSnapshot, ConversationMessage, LaunchResult

logger = logging.getLogger(__name__)


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise GatewayError(f"{name} cannot be empty")
    return value


class CursorAgentGateway(AgentGateway):
    """Talks to ``/v0/agents`` and friends with a bearer token."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = DEFAULT_API_TIMEOUT_SECONDS,
        source_ref: str = DEFAULT_SOURCE_REF,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key:
            raise GatewayError("API key cannot be empty")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.source_ref = source_ref
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Accept": "application/json",
                },
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[dict] = None,
        allow_not_found: bool = False,
    ) -> Any:
        await self.connect()
        try:
            response = await self._client.request(method, url, json=json)
        except httpx.HTTPError as exc:
            raise GatewayError(f"{method} {url} failed: {exc}") from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.is_error:
            raise GatewayError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(
                f"{method} {url} returned invalid JSON", status_code=response.status_code
            ) from exc

    @staticmethod
    def _snapshot(agent_id: str, data: dict) -> AgentSnapshot:
        target = data.get("target") or {}
        return AgentSnapshot(
            agent_id=data.get("id") or agent_id,
            status=AgentState.parse(data.get("status")),
            pr_url=target.get("prUrl"),
            branch_name=target.get("branchName"),
            summary=data.get("summary"),
        )

    async def launch(
        self, prompt: str, model: str, repository: str, auto_create_pr: bool = True
    ) -> LaunchResult:
        _require(prompt, "Prompt")
        _require(model, "Model")
        _require(repository, "Repository")
        body = {
            "prompt": {"text": prompt},
            "model": model,
            "source": {"repository": repository, "ref": self.source_ref},
            "target": {"autoCreatePr": auto_create_pr},
        }
        data = await self._request("POST", "/v0/agents", json=body)
        agent_id = data.get("id")
        if not agent_id:
            raise GatewayError("Launch response did not include an agent id")
        status = AgentState.parse(data.get("status")) if data.get("status") else AgentState.CREATING
        logger.info(f"Launched agent {agent_id} on {repository} with model {model}")
        return LaunchResult(
            agent_id=agent_id,
            status=status,
            branch_name=(data.get("target") or {}).get("branchName"),
        )

    async def follow_up(self, agent_id: str, prompt: str) -> str:
        _require(agent_id, "Agent ID")
        _require(prompt, "Prompt")
        data = await self._request(
            "POST", f"/v0/agents/{agent_id}/followup", json={"prompt": {"text": prompt}}
        )
        logger.info(f"Sent follow-up to agent {agent_id}")
        return data.get("id") or agent_id

    async def get_status(self, agent_id: str) -> AgentSnapshot:
        _require(agent_id, "Agent ID")
        data = await self._request("GET", f"/v0/agents/{agent_id}")
        return self._snapshot(agent_id, data)

    async def delete(self, agent_id: str) -> None:
        _require(agent_id, "Agent ID")
        data = await self._request("DELETE", f"/v0/agents/{agent_id}", allow_not_found=True)
        if data is None:
            logger.info(f"Agent {agent_id} already deleted")
        else:
            logger.info(f"Deleted agent {agent_id}")

    async def get_conversation(self, agent_id: str) -> List[ConversationMessage]:
        _require(agent_id, "Agent ID")
        data = await self._request("GET", f"/v0/agents/{agent_id}/conversation")
        return [
            ConversationMessage(
                id=str(message.get("id", index)),
                type=message.get("type") or "unknown",
                text=message.get("text"),
            )
            for index, message in enumerate(data.get("messages") or [])
        ]

    async def list_models(self) -> List[str]:
        data = await self._request("GET", "/v0/models")
        return list(data.get("models") or [])

    async def list_repositories(self) -> List[str]:
        data = await self._request("GET", "/v0/repositories")
        repositories = []
        for repo in data.get("repositories") or []:
            if isinstance(repo, dict):
                url = repo.get("repository") or f"{repo.get('owner')}/{repo.get('name')}"
                repositories.append(url)
            else:
                repositories.append(str(repo))
        return repositories
