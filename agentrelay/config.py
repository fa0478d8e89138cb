from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_API_TIMEOUT_SECONDS,
    DEFAULT_POLLING_INTERVAL_SECONDS,
    DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
)


class GatewayConfig(BaseModel):
    """Configuration for the remote agent API."""

    backend: Literal["inmemory", "cursor"] = "cursor"
    base_url: str = DEFAULT_API_BASE_URL
    api_key: Optional[str] = None
    timeout_seconds: float = DEFAULT_API_TIMEOUT_SECONDS


class AgentRelayConfig(BaseModel):
    """Top-level configuration model."""

    polling_interval_seconds: int = DEFAULT_POLLING_INTERVAL_SECONDS
    prompt_source_directory: Optional[str] = None
    database_url: Optional[str] = None
    max_concurrent_advances: int = 1
    shutdown_timeout_seconds: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
    gateway: GatewayConfig = GatewayConfig()


def load_config(path: Optional[str] = None) -> AgentRelayConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to AGENTRELAY_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("AGENTRELAY_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = AgentRelayConfig(**data)
    else:
        config = AgentRelayConfig()

    env_db_url = os.getenv("AGENTRELAY_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_interval = os.getenv("AGENTRELAY_POLLING_INTERVAL")
    if env_interval:
        config.polling_interval_seconds = int(env_interval)
    env_api_key = os.getenv("CURSOR_API_KEY")
    if env_api_key:
        config.gateway.api_key = env_api_key
    return config
