"""Name-based dispatch to action handlers."""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from ..contracts import ExecutionContext
from ..errors import ActionFailure
from .base import ActionInvoker

logger = logging.getLogger(__name__)

ActionHandler = Callable[
    [Dict[str, Any], ExecutionContext], Union[Any, Awaitable[Any]]
]


def _is_async(handler: ActionHandler) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


class ActionRegistry(ActionInvoker):
    """Dispatch invocations to handlers registered by action name.

    Handlers may be plain functions or coroutines taking ``(config, context)``.
    Plain functions run in a worker thread.
    Every failure leaves the registry as an :class:`ActionFailure`.
    """

    def __init__(self, fallback: Optional[ActionInvoker] = None) -> None:
        self._handlers: Dict[str, ActionHandler] = {}
        self._fallback = fallback

    def register(self, name: str, handler: ActionHandler) -> None:
        if name in self._handlers:
            logger.warning(f"Replacing handler for action {name}")
        self._handlers[name] = handler

    def action(self, name: str) -> Callable[[ActionHandler], ActionHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: ActionHandler) -> ActionHandler:
            self.register(name, handler)
            return handler

        return decorator

    def names(self) -> list[str]:
        return sorted(self._handlers)

    async def invoke(
        self, action_name: str, config: Dict[str, Any], context: ExecutionContext
    ) -> Any:
        handler = self._handlers.get(action_name)
        if handler is None:
            if self._fallback is not None:
                return await self._fallback.invoke(action_name, config, context)
            raise ActionFailure(
                f"Unsupported action: {action_name}",
                details={"action_name": action_name},
            )

        config = copy.deepcopy(config)
        try:
            if _is_async(handler):
                result = await handler(config, context)
            else:
                # blocking handlers must not stall the loop or escape step timeouts
                result = await asyncio.to_thread(handler, config, context)
                if inspect.isawaitable(result):
                    result = await result
        except ActionFailure:
            raise
        except Exception as exc:
            logger.debug(f"Handler for {action_name} raised {exc!r}")
            raise ActionFailure.from_exception(exc) from exc
        return result

    async def close(self) -> None:
        if self._fallback is not None:
            await self._fallback.close()
