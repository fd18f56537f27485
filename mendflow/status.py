"""Read-side views reconstructed from execution records."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .constants import STATUS_LOG_LIMIT
from .persistence import EventType, ExecutionRepository, ExecutionStatus


class ExecutionStatusView(BaseModel):
    """What a polling client sees for an execution."""

    execution_id: str
    status: ExecutionStatus
    current_step: Optional[str] = None
    current_step_index: int = 0
    total_steps: int = 0
    logs: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class HealingEventView(BaseModel):
    """One AI-applied fix."""

    step: str
    step_index: int
    error: str
    fix_applied: str
    ai_reasoning: str
    timestamp: datetime
    retry_count: int = 0


async def get_execution_status(
    repository: ExecutionRepository, execution_id: str
) -> ExecutionStatusView | None:
    """Build the polling view of ``execution_id``, or ``None`` if unknown."""

    execution = await repository.get_execution(execution_id)
    if execution is None:
        return None

    events = await repository.list_events(execution_id, limit=STATUS_LOG_LIMIT)

    return ExecutionStatusView(
        execution_id=execution_id,
        status=execution.status,
        current_step=execution.current_step_id,
        current_step_index=execution.current_step_index,
        total_steps=execution.total_steps,
        logs=[f"[{e.created_at.isoformat()}] {e.message}" for e in events],
        started_at=execution.started_at,
        completed_at=execution.completed_at,
        error_message=execution.error_message,
    )


async def get_healing_events(
    repository: ExecutionRepository, execution_id: str
) -> list[HealingEventView] | None:
    """Return the self-healing events of ``execution_id`` in order."""

    if await repository.get_execution(execution_id) is None:
        return None
    events = await repository.list_events(execution_id, event_type=EventType.SELF_HEALING)
    return [
        HealingEventView(
            step=e.step_id or "unknown",
            step_index=e.step_index or 0,
            error=e.original_error or "Unknown error",
            fix_applied=e.fix_applied or "No fix details",
            ai_reasoning=e.ai_reasoning or "No reasoning provided",
            timestamp=e.created_at,
            retry_count=e.retry_count or 0,
        )
        for e in events
    ]
