"""Persistence layer for agentrelay jobs."""

from __future__ import annotations

import os
from typing import Optional

from ..config import AgentRelayConfig, load_config
from ..errors import ConfigurationError
from .inmemory import InMemoryJobRepository
from .repository import JobRepository
from .sqlite import SQLiteJobRepository

_repository_instance: JobRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[AgentRelayConfig] = None
) -> JobRepository:
    """Factory function to obtain a job repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``AGENTRELAY_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("AGENTRELAY_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _repository_instance = InMemoryJobRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteJobRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresJobRepository

        _repository_instance = PostgresJobRepository(database_url)
    else:
        raise ConfigurationError(f"Unsupported database backend: {database_url}")

    return _repository_instance


def reset_repository() -> None:
    """Forget the cached repository instance."""
    global _repository_instance
    _repository_instance = None


__all__ = [
    "InMemoryJobRepository",
    "JobRepository",
    "SQLiteJobRepository",
    "get_repository",
    "reset_repository",
]
