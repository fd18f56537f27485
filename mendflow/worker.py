"""Supervised background execution of workflows."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections import OrderedDict
from typing import Any, Dict, Optional

from .constants import FINISHED_EXECUTION_LIMIT
from .contracts import Workflow
from .orchestrator import CancellationToken, ExecutionOrchestrator
from .persistence import ExecutionRecord

logger = logging.getLogger(__name__)


class ExecutionWorker:
    """Accept execution requests and run them as tracked asyncio tasks.

    ``submit`` returns as soon as the ``pending`` execution is persisted.
    Each task is kept until it finishes so that failures surface through
    :meth:`wait` and the done-callback log instead of disappearing.
    Finished tasks stay readable by :meth:`wait` until collected, and at most
    ``keep_finished`` of them are retained.
    """

    def __init__(
        self,
        orchestrator: ExecutionOrchestrator,
        keep_finished: int = FINISHED_EXECUTION_LIMIT,
    ) -> None:
        self._orchestrator = orchestrator
        self._keep_finished = keep_finished
        self._tasks: Dict[str, asyncio.Task[ExecutionRecord]] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._finished: OrderedDict[str, asyncio.Task[ExecutionRecord]] = OrderedDict()

    @property
    def active_executions(self) -> list[str]:
        return [eid for eid, task in self._tasks.items() if not task.done()]

    async def submit(
        self,
        workflow: Workflow,
        user_id: str,
        input_variables: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create an execution for ``workflow`` and start it in the background."""
        execution = await self._orchestrator.create_execution(
            workflow, user_id, input_variables
        )
        execution_id = execution.execution_id
        token = CancellationToken()
        task = asyncio.create_task(
            self._orchestrator.run(execution_id, workflow, token),
            name=f"execution-{execution_id}",
        )
        self._tasks[execution_id] = task
        self._tokens[execution_id] = token
        task.add_done_callback(functools.partial(self._on_done, execution_id))
        logger.info(f"Submitted execution {execution_id} for workflow {workflow.id}")
        return execution_id

    def cancel(self, execution_id: str) -> bool:
        """Request cancellation; honoured before the execution's next step."""
        task = self._tasks.get(execution_id)
        token = self._tokens.get(execution_id)
        if task is None or token is None or task.done():
            return False
        token.cancel()
        logger.info(f"Cancellation requested for execution {execution_id}")
        return True

    async def wait(self, execution_id: str) -> ExecutionRecord:
        """Wait for a submitted execution and return its terminal record.

        A finished execution can be collected once; afterwards it is no
        longer tracked.
        """
        task = self._tasks.get(execution_id) or self._finished.get(execution_id)
        if task is None:
            raise KeyError(f"Execution not tracked by this worker: {execution_id}")
        try:
            return await task
        finally:
            self._finished.pop(execution_id, None)

    async def shutdown(self, cancel: bool = False) -> None:
        """Wait for outstanding executions, optionally cancelling them first."""
        if cancel:
            for execution_id in self.active_executions:
                self.cancel(execution_id)
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_done(self, execution_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(execution_id, None)
        self._tokens.pop(execution_id, None)
        self._finished[execution_id] = task
        while len(self._finished) > self._keep_finished:
            self._finished.popitem(last=False)

        if task.cancelled():
            logger.warning(f"Task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Task {task.get_name()} crashed: {exc!r}", exc_info=exc)
