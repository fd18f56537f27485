"""Core contracts for mendflow workflow execution."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import MIN_FIX_CONFIDENCE


class StepKind(str, Enum):
    ACTION = "action"
    CONDITION = "condition"
    TRIGGER = "trigger"
    END = "end"


class Step(BaseModel):
    """One declared unit of work within a workflow.

    Steps are immutable once authored. A healed retry runs against a copy
    produced by :meth:`with_config`, which keeps ``id``, ``kind`` and
    ``action_name`` intact.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: StepKind = StepKind.ACTION
    action_name: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    next: Optional[str] = None

    @property
    def invocation_name(self) -> str:
        """Name handed to the action invoker."""
        return self.action_name or self.kind.value

    def with_config(self, config: Dict[str, Any]) -> "Step":
        """Return a derived step that differs from this one only in ``config``."""
        return self.model_copy(update={"config": dict(config)})


class Workflow(BaseModel):
    """An ordered, user-authored sequence of steps."""

    id: str
    name: str = ""
    steps: List[Step] = Field(default_factory=list)
    version: int = Field(default=1, ge=1)
    user_id: Optional[str] = None

    @model_validator(mode="after")
    def _unique_step_ids(self) -> "Workflow":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id in workflow {self.id}: {step.id}")
            seen.add(step.id)
        return self


class ExecutionContext(BaseModel):
    """Runtime context threaded through one execution."""

    execution_id: str
    workflow_id: str
    user_id: str
    input_variables: Dict[str, Any] = Field(default_factory=dict)
    step_outputs: Dict[str, Any] = Field(default_factory=dict)
    current_step_index: int = 0

    def snapshot(self) -> "ExecutionContext":
        """Deep copy handed to a single invocation."""
        return self.model_copy(deep=True)


class SelfHealingContext(BaseModel):
    """Failure context sent to the fix proposer."""

    step_id: str
    action_name: str
    step_kind: StepKind
    step_config: Dict[str, Any] = Field(default_factory=dict)
    error_message: str
    error_details: Optional[Dict[str, Any]] = None
    workflow_context: Dict[str, Any] = Field(default_factory=dict)
    previous_outputs: Dict[str, Any] = Field(default_factory=dict)


class SelfHealingResult(BaseModel):
    """Correction proposed for a failed step."""

    fixed_config: Dict[str, Any]
    reasoning: str = Field(min_length=1)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def is_actionable(self) -> bool:
        """Only proposals above the confidence floor are worth a retry."""
        return self.confidence > MIN_FIX_CONFIDENCE
