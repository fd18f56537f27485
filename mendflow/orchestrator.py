"""Sequential execution of a workflow's steps."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from .actions import ActionInvoker
from .audit import AuditLog
from .classifier import FailureClassifier
from .config import ExecutionSettings
from .contracts import ExecutionContext, Workflow
from .errors import OrchestratorFault
from .healing import FixProposer
from .persistence import ExecutionRecord, ExecutionRepository, ExecutionStatus
from .persistence.models import utcnow
from .runner import StepOutcome, StepRunner

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation signal observed between steps."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ExecutionOrchestrator:
    """Drive executions from ``pending`` to a terminal status.

    Steps run strictly in declaration order; step N is not invoked before
    step N-1 reaches a terminal state. The first step that ends ``failed``
    stops the execution.
    """

    def __init__(
        self,
        repository: ExecutionRepository,
        invoker: ActionInvoker,
        proposer: Optional[FixProposer] = None,
        classifier: Optional[FailureClassifier] = None,
        settings: Optional[ExecutionSettings] = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or ExecutionSettings()
        self.audit = AuditLog(repository)
        self.runner = StepRunner(
            invoker,
            repository,
            audit=self.audit,
            classifier=classifier,
            proposer=proposer,
            step_timeout=self.settings.step_timeout,
            healing_timeout=self.settings.healing_timeout,
        )

    async def create_execution(
        self,
        workflow: Workflow,
        user_id: str,
        input_variables: Optional[Dict[str, Any]] = None,
    ) -> ExecutionRecord:
        """Persist a new ``pending`` execution for ``workflow``."""
        execution = ExecutionRecord(
            workflow_id=workflow.id,
            user_id=user_id,
            total_steps=len(workflow.steps),
            input_variables=dict(input_variables or {}),
        )
        await self.repository.create_execution(execution)
        logger.info(
            f"Created execution {execution.execution_id} for workflow {workflow.id}"
        )
        return execution

    async def execute(
        self,
        workflow: Workflow,
        user_id: str,
        input_variables: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionRecord:
        """Create an execution and run it to completion."""
        execution = await self.create_execution(workflow, user_id, input_variables)
        return await self.run(execution.execution_id, workflow, cancel_token)

    async def execute_stored(
        self,
        workflow_id: str,
        user_id: str,
        input_variables: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionRecord:
        """Read ``workflow_id`` from the store once and execute it."""
        workflow = await self.repository.get_workflow(workflow_id)
        if workflow is None:
            raise KeyError(f"Workflow not found: {workflow_id}")
        return await self.execute(workflow, user_id, input_variables, cancel_token)

    async def run(
        self,
        execution_id: str,
        workflow: Workflow,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionRecord:
        """Run a ``pending`` execution and return its terminal record."""
        execution = await self.repository.get_execution(execution_id)
        if execution is None:
            raise KeyError(f"Execution not found: {execution_id}")
        if execution.status is not ExecutionStatus.PENDING:
            raise ValueError(
                f"Execution {execution_id} is {execution.status.value}, expected pending"
            )

        context = ExecutionContext(
            execution_id=execution_id,
            workflow_id=workflow.id,
            user_id=execution.user_id,
            input_variables=execution.input_variables,
        )

        try:
            await self._drive(context, workflow, cancel_token)
        except asyncio.CancelledError:
            await self._cancel(context, "Execution task was cancelled")
            raise
        except Exception as exc:
            fault = OrchestratorFault(execution_id, exc)
            logger.exception(str(fault))
            await self._record_fault(context, fault)

        final = await self.repository.get_execution(execution_id)
        if final is None:
            raise KeyError(f"Execution not found: {execution_id}")
        return final

    # ------------------------------------------------------------------
    async def _drive(
        self,
        context: ExecutionContext,
        workflow: Workflow,
        cancel_token: Optional[CancellationToken],
    ) -> None:
        execution_id = context.execution_id
        await self.repository.update_execution(
            execution_id,
            {"status": ExecutionStatus.RUNNING, "started_at": utcnow()},
        )

        for index, step in enumerate(workflow.steps):
            if cancel_token is not None and cancel_token.cancelled:
                await self._cancel(
                    context, f"Execution cancelled before step: {step.id}", step.id
                )
                return

            context.current_step_index = index
            await self.repository.update_execution(
                execution_id,
                {"current_step_index": index, "current_step_id": step.id},
            )

            outcome = await self.runner.run(step, context)
            if not outcome.succeeded:
                await self._fail(context, outcome)
                return

            context.step_outputs[step.id] = outcome.output
            if self.settings.step_delay:
                await asyncio.sleep(self.settings.step_delay)

        await self.repository.update_execution(
            execution_id,
            {
                "status": ExecutionStatus.COMPLETED,
                "output_result": context.step_outputs,
                "completed_at": utcnow(),
            },
        )
        await self.audit.info(
            execution_id,
            "Workflow execution completed successfully",
            metadata={"total_steps": len(workflow.steps)},
        )

    async def _fail(self, context: ExecutionContext, outcome: StepOutcome) -> None:
        message = outcome.error_message or f"Step {outcome.step.id} failed"
        await self.repository.update_execution(
            context.execution_id,
            {
                "status": ExecutionStatus.FAILED,
                "error_message": message,
                "completed_at": utcnow(),
            },
        )
        await self.audit.error(
            context.execution_id,
            f"Workflow execution failed: {message}",
            step_id=outcome.step.id,
            step_index=context.current_step_index,
            metadata=dict(outcome.error.details or {}) if outcome.error else {},
        )

    async def _cancel(
        self, context: ExecutionContext, message: str, step_id: Optional[str] = None
    ) -> None:
        await self.repository.update_execution(
            context.execution_id,
            {"status": ExecutionStatus.CANCELLED, "completed_at": utcnow()},
        )
        await self.audit.info(context.execution_id, message, step_id=step_id)

    async def _record_fault(
        self, context: ExecutionContext, fault: OrchestratorFault
    ) -> None:
        try:
            await self.repository.update_execution(
                context.execution_id,
                {
                    "status": ExecutionStatus.FAILED,
                    "error_message": str(fault.cause) or fault.cause.__class__.__name__,
                    "completed_at": utcnow(),
                },
            )
        except Exception:
            logger.exception(
                f"Could not mark execution {context.execution_id} as failed"
            )
        await self.audit.error(
            context.execution_id,
            str(fault),
            step_index=context.current_step_index,
            metadata={"exception_type": fault.cause.__class__.__name__},
        )
