"""Action invokers for workflow steps."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import httpx

from ..contracts import ExecutionContext
from .base import ActionInvoker
from .http import HttpRequestAction
from .registry import ActionHandler, ActionRegistry
from .simulated import SimulatedActionInvoker


async def _delay_timer(config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
    duration = config.get("duration", 1000)
    await asyncio.sleep(duration / 1000)
    return {"success": True, "delayed": duration}


def default_registry(
    client: Optional[httpx.AsyncClient] = None,
    fallback: Optional[ActionInvoker] = None,
) -> ActionRegistry:
    """Registry with the integrations that ship with mendflow."""

    registry = ActionRegistry(fallback=fallback)
    registry.register("http_request", HttpRequestAction(client))
    registry.register("delay_timer", _delay_timer)
    return registry


__all__ = [
    "ActionHandler",
    "ActionInvoker",
    "ActionRegistry",
    "HttpRequestAction",
    "SimulatedActionInvoker",
    "default_registry",
]
