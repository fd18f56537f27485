"""Error taxonomy for workflow execution."""

from __future__ import annotations

from typing import Any, Optional


class ActionFailure(Exception):
    """Structured failure raised by an action invoker.

    ``details`` is an optional JSON-shaped mapping with whatever the
    integration knows about the failure (status codes, response bodies).
    """

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ActionFailure":
        """Wrap an arbitrary exception without losing its message."""
        if isinstance(exc, ActionFailure):
            return exc
        message = str(exc) or exc.__class__.__name__
        return cls(message, details={"exception_type": exc.__class__.__name__})


class ProposalError(Exception):
    """The fix proposer was unavailable or returned unusable output."""


class VersionConflict(Exception):
    """A workflow was edited after the writer read it."""

    def __init__(self, workflow_id: str, expected_version: int, current_version: int):
        super().__init__(
            f"Workflow {workflow_id} has been modified. Current version is "
            f"{current_version}, but you provided {expected_version}"
        )
        self.workflow_id = workflow_id
        self.expected_version = expected_version
        self.current_version = current_version


class OrchestratorFault(Exception):
    """Unexpected error inside the orchestration loop itself."""

    def __init__(self, execution_id: str, cause: BaseException):
        super().__init__(f"Orchestrator fault in execution {execution_id}: {cause}")
        self.execution_id = execution_id
        self.cause = cause
