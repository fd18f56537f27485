"""In-memory implementation of the execution repository."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from ..contracts import Step, Workflow
from ..errors import VersionConflict
from .models import (
    EXECUTION_UPDATE_FIELDS,
    STEP_EXECUTION_UPDATE_FIELDS,
    EventType,
    ExecutionEvent,
    ExecutionRecord,
    StepExecutionRecord,
    check_update_fields,
    utcnow,
)
from .repository import ExecutionRepository


class InMemoryExecutionRepository(ExecutionRepository):
    """Store execution state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._executions: Dict[str, ExecutionRecord] = {}
        self._step_executions: Dict[str, StepExecutionRecord] = {}
        self._events: Dict[str, List[ExecutionEvent]] = {}
        self._workflow_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def update_workflow_steps(
        self, workflow_id: str, steps: Sequence[Step], expected_version: int
    ) -> Workflow:
        async with self._workflow_lock:
            wf = self._workflows.get(workflow_id)
            if wf is None:
                raise KeyError(f"Workflow not found: {workflow_id}")
            if wf.version != expected_version:
                raise VersionConflict(workflow_id, expected_version, wf.version)
            updated = Workflow(
                id=wf.id,
                name=wf.name,
                steps=list(steps),
                version=wf.version + 1,
                user_id=wf.user_id,
            )
            self._workflows[workflow_id] = updated
            return updated.model_copy(deep=True)

    # ------------------------------------------------------------------
    async def create_execution(self, execution: ExecutionRecord) -> ExecutionRecord:
        self._executions[execution.execution_id] = execution.model_copy(deep=True)
        self._events.setdefault(execution.execution_id, [])
        return execution

    async def update_execution(
        self, execution_id: str, updates: dict[str, Any]
    ) -> None:
        check_update_fields(updates, EXECUTION_UPDATE_FIELDS)
        execution = self._executions.get(execution_id)
        if not execution or execution.status.is_terminal:
            return
        self._executions[execution_id] = ExecutionRecord.model_validate(
            {**execution.model_dump(), **updates, "updated_at": utcnow()}
        )

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        executions = sorted(self._executions.values(), key=lambda e: e.created_at)
        if workflow_id:
            executions = [e for e in executions if e.workflow_id == workflow_id]
        return [e.model_copy(deep=True) for e in executions]

    # ------------------------------------------------------------------
    async def create_step_execution(
        self, record: StepExecutionRecord
    ) -> StepExecutionRecord:
        self._step_executions[record.id] = record.model_copy(deep=True)
        return record

    async def update_step_execution(
        self, step_execution_id: str, updates: dict[str, Any]
    ) -> None:
        check_update_fields(updates, STEP_EXECUTION_UPDATE_FIELDS)
        record = self._step_executions.get(step_execution_id)
        if record:
            self._step_executions[step_execution_id] = StepExecutionRecord.model_validate(
                {**record.model_dump(), **updates}
            )

    async def list_step_executions(
        self, execution_id: str
    ) -> list[StepExecutionRecord]:
        rows = [
            r for r in self._step_executions.values() if r.execution_id == execution_id
        ]
        return [r.model_copy(deep=True) for r in sorted(rows, key=lambda r: r.step_index)]

    # ------------------------------------------------------------------
    async def append_event(self, event: ExecutionEvent) -> ExecutionEvent:
        self._events.setdefault(event.execution_id, []).append(
            event.model_copy(deep=True)
        )
        return event

    async def list_events(
        self,
        execution_id: str,
        event_type: Optional[EventType] = None,
        limit: Optional[int] = None,
    ) -> list[ExecutionEvent]:
        events = self._events.get(execution_id, [])
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        if limit is not None:
            events = events[:limit]
        return [e.model_copy(deep=True) for e in events]
