"""Append-only audit trail of execution state transitions."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from .contracts import SelfHealingResult
from .persistence import EventType, ExecutionEvent, ExecutionRepository

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    EventType.STEP_FAILED: logging.WARNING,
    EventType.ERROR: logging.ERROR,
}


class AuditLog:
    """Records execution events through the repository.

    Every event is mirrored to the module logger. Failing to persist an event
    is logged but never aborts the step that produced it.
    """

    def __init__(self, repository: ExecutionRepository) -> None:
        self._repository = repository

    async def record(
        self,
        execution_id: str,
        event_type: EventType,
        message: str,
        *,
        step_id: Optional[str] = None,
        step_index: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
        original_error: Optional[str] = None,
        fix_applied: Optional[str] = None,
        ai_reasoning: Optional[str] = None,
        retry_count: Optional[int] = None,
    ) -> Optional[ExecutionEvent]:
        event = ExecutionEvent(
            execution_id=execution_id,
            event_type=event_type,
            step_id=step_id,
            step_index=step_index,
            message=message,
            metadata=metadata or {},
            original_error=original_error,
            fix_applied=fix_applied,
            ai_reasoning=ai_reasoning,
            retry_count=retry_count,
        )
        logger.log(
            _LOG_LEVELS.get(event_type, logging.INFO),
            f"[{execution_id}] {event_type.value}: {message}",
        )
        try:
            return await self._repository.append_event(event)
        except Exception as exc:
            logger.error(f"Failed to log event for execution {execution_id}: {exc}")
            return None

    # ------------------------------------------------------------------
    async def step_started(self, execution_id: str, step_id: str, step_index: int, kind: str):
        return await self.record(
            execution_id,
            EventType.STEP_STARTED,
            f"Starting step: {step_id} ({kind})",
            step_id=step_id,
            step_index=step_index,
        )

    async def step_completed(
        self, execution_id: str, step_id: str, step_index: int, output: Any
    ):
        return await self.record(
            execution_id,
            EventType.STEP_COMPLETED,
            f"Completed step: {step_id}",
            step_id=step_id,
            step_index=step_index,
            metadata={"output": output},
        )

    async def step_failed(
        self,
        execution_id: str,
        step_id: str,
        step_index: int,
        error_message: str,
        details: Optional[dict[str, Any]] = None,
        healed_retry: bool = False,
    ):
        prefix = "Healed retry failed" if healed_retry else "Step failed"
        return await self.record(
            execution_id,
            EventType.STEP_FAILED,
            f"{prefix}: {error_message}",
            step_id=step_id,
            step_index=step_index,
            metadata=dict(details or {}),
        )

    async def retry(
        self, execution_id: str, step_id: str, step_index: int, retry_count: int
    ):
        return await self.record(
            execution_id,
            EventType.RETRY,
            f"Attempting self-healing for step: {step_id}",
            step_id=step_id,
            step_index=step_index,
            metadata={"retry_count": retry_count},
            retry_count=retry_count,
        )

    async def self_healing(
        self,
        execution_id: str,
        step_id: str,
        step_index: int,
        original_error: str,
        fix: SelfHealingResult,
        retry_count: int,
    ):
        return await self.record(
            execution_id,
            EventType.SELF_HEALING,
            f"AI applied fix to step: {step_id}",
            step_id=step_id,
            step_index=step_index,
            metadata={"confidence": fix.confidence},
            original_error=original_error,
            fix_applied=json.dumps(fix.fixed_config, default=str),
            ai_reasoning=fix.reasoning,
            retry_count=retry_count,
        )

    async def info(self, execution_id: str, message: str, **fields: Any):
        return await self.record(execution_id, EventType.INFO, message, **fields)

    async def error(self, execution_id: str, message: str, **fields: Any):
        return await self.record(execution_id, EventType.ERROR, message, **fields)
