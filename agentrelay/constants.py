"""Default values shared across agentrelay modules."""

DEFAULT_POLLING_INTERVAL_SECONDS = 5
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 30.0
DEFAULT_API_BASE_URL = "https://api.cursor.com"
DEFAULT_API_TIMEOUT_SECONDS = 30.0
DEFAULT_SOURCE_REF = "main"

PROMPT_UNKNOWN = "UNKNOWN"
PROMPT_SENT = "SENT"
PROMPT_COMPLETED = "COMPLETED"

INPUT_PLACEHOLDER = "<input>INPUT</input>"

DEFAULT_MODEL = "default"
DEFAULT_REPOSITORY = "default-repository"
