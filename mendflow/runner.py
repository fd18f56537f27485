"""Single-step state machine with one AI-assisted healing attempt.

::

    pending -> running -> completed
                       -> failed -> healing -> running -> healed
                                                       -> failed
                                 -> failed (permanent, no proposer,
                                            low confidence, proposer error)

Whatever happens during healing, a failed step always reports its original
error.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Optional

from .actions import ActionInvoker
from .audit import AuditLog
from .classifier import FailureClass, FailureClassifier
from .constants import (
    DEFAULT_HEALING_TIMEOUT,
    DEFAULT_STEP_TIMEOUT,
    MAX_HEALING_ATTEMPTS,
)
from .contracts import ExecutionContext, SelfHealingContext, SelfHealingResult, Step
from .errors import ActionFailure, ProposalError
from .healing import FixProposer
from .persistence import ExecutionRepository, StepExecutionRecord, StepStatus
from .persistence.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    """Terminal result of running one step."""

    step: Step
    status: StepStatus
    step_execution_id: str
    output: Any = None
    error: Optional[ActionFailure] = None
    retry_error: Optional[ActionFailure] = None
    healed_step: Optional[Step] = None
    fix: Optional[SelfHealingResult] = None
    invocations: int = 1

    @property
    def succeeded(self) -> bool:
        return self.status in (StepStatus.COMPLETED, StepStatus.HEALED)

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None


class StepRunner:
    """Drive a single step through invocation, classification and healing."""

    def __init__(
        self,
        invoker: ActionInvoker,
        repository: ExecutionRepository,
        audit: Optional[AuditLog] = None,
        classifier: Optional[FailureClassifier] = None,
        proposer: Optional[FixProposer] = None,
        step_timeout: float = DEFAULT_STEP_TIMEOUT,
        healing_timeout: float = DEFAULT_HEALING_TIMEOUT,
    ) -> None:
        self._invoker = invoker
        self._repository = repository
        self._audit = audit or AuditLog(repository)
        self._classifier = classifier or FailureClassifier()
        self._proposer = proposer
        self.step_timeout = step_timeout
        self.healing_timeout = healing_timeout

    async def run(self, step: Step, context: ExecutionContext) -> StepOutcome:
        execution_id = context.execution_id
        index = context.current_step_index

        record = StepExecutionRecord(
            execution_id=execution_id,
            step_id=step.id,
            step_index=index,
            step_kind=step.kind.value,
            action_name=step.action_name,
            status=StepStatus.RUNNING,
            input_data=dict(step.config),
            started_at=utcnow(),
        )
        await self._repository.create_step_execution(record)
        try:
            return await self._run_recorded(step, context, record)
        except (asyncio.CancelledError, Exception) as exc:
            await self._close_interrupted(record, exc)
            raise

    async def _run_recorded(
        self, step: Step, context: ExecutionContext, record: StepExecutionRecord
    ) -> StepOutcome:
        execution_id = context.execution_id
        index = context.current_step_index
        await self._audit.step_started(execution_id, step.id, index, step.kind.value)

        try:
            output = await self._invoke(step, context)
        except ActionFailure as failure:
            return await self._handle_failure(step, context, record, failure)

        await self._repository.update_step_execution(
            record.id,
            {
                "status": StepStatus.COMPLETED,
                "output_data": output,
                "completed_at": utcnow(),
            },
        )
        await self._audit.step_completed(execution_id, step.id, index, output)
        return StepOutcome(
            step=step,
            status=StepStatus.COMPLETED,
            step_execution_id=record.id,
            output=output,
        )

    async def _close_interrupted(
        self, record: StepExecutionRecord, exc: BaseException
    ) -> None:
        """Fail the open step row when the execution is torn down mid-step."""
        if isinstance(exc, asyncio.CancelledError):
            message = "Step interrupted: execution task was cancelled"
        else:
            message = f"Step interrupted: {str(exc) or exc.__class__.__name__}"
        try:
            await self._repository.update_step_execution(
                record.id,
                {
                    "status": StepStatus.FAILED,
                    "error_message": message,
                    "completed_at": utcnow(),
                },
            )
        except Exception:
            logger.exception(f"Could not close step execution {record.id}")

    # ------------------------------------------------------------------
    async def _invoke(self, step: Step, context: ExecutionContext) -> Any:
        """Invoke the step's action once, normalising every failure."""
        name = step.invocation_name
        try:
            return await asyncio.wait_for(
                self._call(name, copy.deepcopy(step.config), context.snapshot()),
                timeout=self.step_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ActionFailure(
                f"Action {name} timed out after {self.step_timeout:g} seconds",
                details={"timed_out": True, "timeout": self.step_timeout},
            ) from exc

    async def _call(
        self, name: str, config: dict[str, Any], context: ExecutionContext
    ) -> Any:
        # Errors raised by the action itself, a TimeoutError included, are
        # converted here so only the step timeout reaches ``_invoke``.
        try:
            return await self._invoker.invoke(name, config, context)
        except ActionFailure:
            raise
        except Exception as exc:
            raise ActionFailure.from_exception(exc) from exc

    async def _handle_failure(
        self,
        step: Step,
        context: ExecutionContext,
        record: StepExecutionRecord,
        failure: ActionFailure,
        retry_count: int = 0,
    ) -> StepOutcome:
        execution_id = context.execution_id
        index = context.current_step_index

        await self._repository.update_step_execution(
            record.id,
            {
                "status": StepStatus.FAILED,
                "error_message": failure.message,
                "completed_at": utcnow(),
            },
        )
        await self._audit.step_failed(
            execution_id, step.id, index, failure.message, failure.details
        )

        failed = StepOutcome(
            step=step,
            status=StepStatus.FAILED,
            step_execution_id=record.id,
            error=failure,
        )

        if self._classifier.classify(failure) is FailureClass.PERMANENT:
            logger.info(f"Step {step.id} failed permanently: {failure.message}")
            return failed
        if self._proposer is None:
            logger.info(f"Step {step.id} is healable but no fix proposer is configured")
            return failed
        if retry_count >= MAX_HEALING_ATTEMPTS:
            return failed

        return await self._heal(step, context, record, failure, failed, retry_count + 1)

    async def _heal(
        self,
        step: Step,
        context: ExecutionContext,
        record: StepExecutionRecord,
        failure: ActionFailure,
        failed: StepOutcome,
        retry_count: int,
    ) -> StepOutcome:
        execution_id = context.execution_id
        index = context.current_step_index

        logger.info(f"[Self-Healing] Attempting to fix step {step.id}...")
        await self._audit.retry(execution_id, step.id, index, retry_count)

        healing_context = SelfHealingContext(
            step_id=step.id,
            action_name=step.invocation_name,
            step_kind=step.kind,
            step_config=dict(step.config),
            error_message=failure.message,
            error_details=failure.details,
            workflow_context=context.input_variables,
            previous_outputs=context.step_outputs,
        )
        try:
            fix = await self._propose(healing_context)
        except ProposalError as exc:
            await self._audit.error(
                execution_id,
                f"Self-healing failed for step: {step.id}",
                step_id=step.id,
                step_index=index,
                metadata={"healing_error": str(exc)},
            )
            return failed

        failed.fix = fix
        if not fix.is_actionable:
            await self._audit.info(
                execution_id,
                f"Declined AI fix for step {step.id}: confidence {fix.confidence:.2f} is too low",
                step_id=step.id,
                step_index=index,
                metadata={"confidence": fix.confidence, "reasoning": fix.reasoning},
            )
            return failed

        healed_step = step.with_config(fix.fixed_config)
        failed.healed_step = healed_step
        failed.invocations = 2
        await self._repository.update_step_execution(
            record.id,
            {
                "status": StepStatus.RUNNING,
                "input_data": dict(healed_step.config),
                "retry_count": retry_count,
                "completed_at": None,
            },
        )

        try:
            output = await self._invoke(healed_step, context)
        except ActionFailure as retry_failure:
            await self._repository.update_step_execution(
                record.id,
                {
                    "status": StepStatus.FAILED,
                    "error_message": failure.message,
                    "completed_at": utcnow(),
                },
            )
            await self._audit.step_failed(
                execution_id,
                step.id,
                index,
                retry_failure.message,
                {"original_error": failure.message, **(retry_failure.details or {})},
                healed_retry=True,
            )
            failed.retry_error = retry_failure
            return failed

        await self._repository.update_step_execution(
            record.id,
            {
                "status": StepStatus.HEALED,
                "was_healed": True,
                "output_data": output,
                "completed_at": utcnow(),
            },
        )
        await self._audit.self_healing(
            execution_id, step.id, index, failure.message, fix, retry_count
        )
        return StepOutcome(
            step=step,
            status=StepStatus.HEALED,
            step_execution_id=record.id,
            output=output,
            error=failure,
            healed_step=healed_step,
            fix=fix,
            invocations=2,
        )

    async def _propose(self, healing_context: SelfHealingContext) -> SelfHealingResult:
        """Call the proposer, folding every failure mode into ``ProposalError``."""
        if self._proposer is None:
            raise ProposalError("No fix proposer configured")
        try:
            result = await asyncio.wait_for(
                self._proposer.propose(healing_context), timeout=self.healing_timeout
            )
            if not isinstance(result, SelfHealingResult):
                result = SelfHealingResult.model_validate(result)
            return result
        except ProposalError:
            raise
        except asyncio.TimeoutError as exc:
            raise ProposalError(
                f"Fix proposal timed out after {self.healing_timeout:g} seconds"
            ) from exc
        except Exception as exc:
            logger.exception(f"Fix proposer raised for step {healing_context.step_id}")
            raise ProposalError(str(exc) or exc.__class__.__name__) from exc
