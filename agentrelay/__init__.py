"""agentrelay: drive remote AI coding agents through declarative workflows."""

from .config import AgentRelayConfig, load_config
from .engine import JobAdvancer, JobDeleter, JobOrchestrator, PollingScheduler
from .errors import (
    AgentRelayError,
    ConfigurationError,
    GatewayError,
    StorageError,
    WorkflowParseError,
)
from .gateway import get_gateway
from .models import AgentState, Job, Prompt, WorkflowShape
from .persistence import get_repository
from .services import CompletionChecker, JobInspector, JobSubmitter
from .workflow import load_workflow

__version__ = "0.1.0"
__all__ = [
    "AgentRelayConfig",
    "AgentRelayError",
    "AgentState",
    "CompletionChecker",
    "ConfigurationError",
    "GatewayError",
    "Job",
    "JobAdvancer",
    "JobDeleter",
    "JobInspector",
    "JobOrchestrator",
    "JobSubmitter",
    "PollingScheduler",
    "Prompt",
    "StorageError",
    "WorkflowParseError",
    "WorkflowShape",
    "get_gateway",
    "get_repository",
    "load_config",
    "load_workflow",
]
