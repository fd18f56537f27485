"""Data models for persisted execution state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_EXECUTION_STATUSES


TERMINAL_EXECUTION_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    HEALED = "healed"


class EventType(str, Enum):
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    RETRY = "retry"
    SELF_HEALING = "self_healing"
    INFO = "info"
    ERROR = "error"


class ExecutionRecord(BaseModel):
    """One run of a workflow."""

    execution_id: str = Field(default_factory=new_id)
    workflow_id: str
    user_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_step_index: int = 0
    current_step_id: Optional[str] = None
    total_steps: int = 0
    input_variables: dict[str, Any] = Field(default_factory=dict)
    output_result: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StepExecutionRecord(BaseModel):
    """Per-step runtime record, updated in place through its lifecycle."""

    id: str = Field(default_factory=new_id)
    execution_id: str
    step_id: str
    step_index: int
    step_kind: str
    action_name: Optional[str] = None
    status: StepStatus = StepStatus.PENDING
    input_data: dict[str, Any] = Field(default_factory=dict)
    output_data: Any = None
    error_message: Optional[str] = None
    retry_count: int = 0
    was_healed: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class ExecutionEvent(BaseModel):
    """Append-only audit entry."""

    id: str = Field(default_factory=new_id)
    execution_id: str
    event_type: EventType
    step_id: Optional[str] = None
    step_index: Optional[int] = None
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    original_error: Optional[str] = None
    fix_applied: Optional[str] = None
    ai_reasoning: Optional[str] = None
    retry_count: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


# Columns the orchestrator and step runner are allowed to update.
EXECUTION_UPDATE_FIELDS = frozenset(
    {
        "status",
        "current_step_index",
        "current_step_id",
        "output_result",
        "error_message",
        "started_at",
        "completed_at",
    }
)
STEP_EXECUTION_UPDATE_FIELDS = frozenset(
    {
        "status",
        "input_data",
        "output_data",
        "error_message",
        "retry_count",
        "was_healed",
        "started_at",
        "completed_at",
    }
)


def check_update_fields(updates: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(updates) - allowed
    if unknown:
        raise ValueError(f"Unknown update fields: {sorted(unknown)}")
