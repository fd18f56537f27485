"""Base action invoker interface."""

from __future__ import annotations

import abc
from typing import Any, Dict

from ..contracts import ExecutionContext


class ActionInvoker(metaclass=abc.ABCMeta):
    """Executes one step's configured action.

    Implementations return a JSON-shaped result or raise
    :class:`~mendflow.errors.ActionFailure`. They must not keep mutable state
    between calls: a healed retry re-invokes the same action with a patched
    config and expects a clean slate.
    """

    @abc.abstractmethod
    async def invoke(
        self, action_name: str, config: Dict[str, Any], context: ExecutionContext
    ) -> Any:
        """Run ``action_name`` with ``config``."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release any held resources (no-op by default)."""
        pass
