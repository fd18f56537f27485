"""Repository abstraction for workflow and execution persistence."""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from ..contracts import Step, Workflow
from .models import (
    EventType,
    ExecutionEvent,
    ExecutionRecord,
    StepExecutionRecord,
)


class ExecutionRepository(Protocol):
    """Protocol for execution state persistence backends.

    The store is the only synchronisation point between concurrent
    executions; every write is scoped to a single execution's rows.
    """

    async def save_workflow(self, workflow: Workflow) -> None:
        """Insert or replace a workflow definition."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow definition by id."""

    async def update_workflow_steps(
        self, workflow_id: str, steps: Sequence[Step], expected_version: int
    ) -> Workflow:
        """Replace the steps of a workflow, bumping its version.

        Raises ``VersionConflict`` if the stored version is not
        ``expected_version``.
        """

    async def create_execution(self, execution: ExecutionRecord) -> ExecutionRecord:
        """Persist a new execution."""

    async def update_execution(
        self, execution_id: str, updates: dict[str, Any]
    ) -> None:
        """Update execution fields. Ignored once the execution is terminal."""

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        """Retrieve an execution by id."""

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        """Return executions, optionally filtered by workflow."""

    async def create_step_execution(
        self, record: StepExecutionRecord
    ) -> StepExecutionRecord:
        """Persist a step execution row."""

    async def update_step_execution(
        self, step_execution_id: str, updates: dict[str, Any]
    ) -> None:
        """Update a step execution row in place."""

    async def list_step_executions(
        self, execution_id: str
    ) -> list[StepExecutionRecord]:
        """Return step rows of an execution ordered by step index."""

    async def append_event(self, event: ExecutionEvent) -> ExecutionEvent:
        """Insert an event. Events are never updated or deleted."""

    async def list_events(
        self,
        execution_id: str,
        event_type: Optional[EventType] = None,
        limit: Optional[int] = None,
    ) -> list[ExecutionEvent]:
        """Return events of an execution in insertion order."""
