"""Gateway factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import AgentRelayConfig, load_config
from ..errors import ConfigurationError
from .base import AgentGateway, AgentSnapshot, ConversationMessage, LaunchResult
from .inmemory import InMemoryAgentGateway


def get_gateway(
    backend: Optional[str] = None, config: Optional[AgentRelayConfig] = None
) -> AgentGateway:
    """Factory function to get the configured agent gateway."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("AGENTRELAY_GATEWAY")
        or config.gateway.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryAgentGateway()
    elif backend == "cursor":
        from .cursor import CursorAgentGateway

        gateway_conf = config.gateway
        api_key = os.getenv("CURSOR_API_KEY") or gateway_conf.api_key
        if not api_key:
            raise ConfigurationError(
                "CURSOR_API_KEY is not set; export it or set gateway.api_key in the config"
            )
        return CursorAgentGateway(
            api_key=api_key,
            base_url=gateway_conf.base_url,
            timeout=gateway_conf.timeout_seconds,
        )
    else:
        raise ConfigurationError(f"Unsupported gateway backend: {backend}")


__all__ = [
    "AgentGateway",
    "AgentSnapshot",
    "ConversationMessage",
    "InMemoryAgentGateway",
    "LaunchResult",
    "get_gateway",
]
