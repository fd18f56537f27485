"""Prompts sent to the fix proposer's language model."""

from __future__ import annotations

import json
from typing import Any

from ..contracts import SelfHealingContext

SYSTEM_PROMPT = (
    "You are an AI workflow debugger and fixer. When a workflow step fails, "
    "you analyze the error and propose a fix.\n\n"
    "Your job:\n"
    "1. Understand the step configuration and what it was trying to do\n"
    "2. Analyze the error message\n"
    "3. Propose a corrected configuration that should work\n"
    "4. Explain your reasoning, naming the specific field you changed and why\n\n"
    "You may only change the step configuration. The action itself stays the same.\n\n"
    "Return ONLY a JSON object with this structure:\n"
    "{\n"
    '  "fixed_config": { /* corrected step configuration */ },\n'
    '  "reasoning": "Which field was wrong and how you fixed it",\n'
    '  "confidence": 0.85 // 0-1 score of how confident you are this will work\n'
    "}"
)


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def build_healing_prompt(context: SelfHealingContext) -> str:
    """Render the user prompt describing a failed step."""
    lines = [
        f"Step ID: {context.step_id}",
        f"Step Type: {context.step_kind.value}",
        f"Action: {context.action_name}",
        f"Original Configuration: {_dump(context.step_config)}",
        "",
        f"Error Message: {context.error_message}",
    ]
    if context.error_details:
        lines.append(f"Error Details: {_dump(context.error_details)}")
    lines.extend(
        [
            "",
            f"Workflow Context: {_dump(context.workflow_context)}",
            f"Previous Step Outputs: {_dump(context.previous_outputs)}",
            "",
            "Please analyze this error and propose a fix.",
        ]
    )
    return "\n".join(lines)
