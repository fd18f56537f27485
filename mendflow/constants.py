"""Shared constants for mendflow."""

# A step gets exactly one corrective retry after its original attempt.
MAX_HEALING_ATTEMPTS = 1

# Proposals at or below this confidence are never applied.
MIN_FIX_CONFIDENCE = 0.1

DEFAULT_STEP_TIMEOUT = 30.0
DEFAULT_HEALING_TIMEOUT = 60.0

DEFAULT_HEALING_MODEL = "openai:gpt-4o-mini"
DEFAULT_HEALING_TEMPERATURE = 0.3

# Number of events rendered into a status view's log lines.
STATUS_LOG_LIMIT = 50

# Finished tasks an ExecutionWorker keeps for later ``wait`` calls.
FINISHED_EXECUTION_LIMIT = 100
