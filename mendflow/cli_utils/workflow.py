"""Utility functions to load workflow files and render execution records."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import yaml

from mendflow.contracts import Workflow
from mendflow.persistence import ExecutionEvent, StepExecutionRecord


def load_workflow_file(path: Path) -> Workflow:
    """Parse a YAML or JSON workflow definition.

    A file without an ``id`` gets its stem as workflow id.
    """
    text = path.read_text()
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Workflow file {path} must contain a mapping")
    data.setdefault("id", path.stem)
    data.setdefault("name", path.stem)
    return Workflow.model_validate(data)


def parse_input_variables(raw: Optional[str]) -> dict[str, Any]:
    if not raw:
        return {}
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError("Input variables must be a JSON object")
    return value


def _format_timestamp(value: Any) -> str:
    return value.isoformat(timespec="seconds") if value else "-"


def format_step_line(step: StepExecutionRecord) -> str:
    line = f"- [{step.step_index}] {step.step_id}: {step.status.value}"
    if step.retry_count:
        line += f" (retries: {step.retry_count})"
    if step.was_healed:
        line += " [healed]"
    if step.started_at or step.completed_at:
        line += f" ({_format_timestamp(step.started_at)} -> {_format_timestamp(step.completed_at)})"
    if step.error_message:
        line += f"\n    error: {step.error_message}"
    return line


def format_event_line(event: ExecutionEvent) -> str:
    line = f"{_format_timestamp(event.created_at)} {event.event_type.value:<15} {event.message}"
    if event.ai_reasoning:
        line += f"\n    reasoning: {event.ai_reasoning}"
    if event.fix_applied:
        line += f"\n    fix: {event.fix_applied}"
    return line
