"""Simulated stand-ins for external integrations.

Used by the CLI and demos when no real integration is wired in. Failure
injection is off unless ``failure_rate`` is set.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Dict, Optional

from ..contracts import ExecutionContext, StepKind
from ..errors import ActionFailure
from .base import ActionInvoker

logger = logging.getLogger(__name__)


class SimulatedActionInvoker(ActionInvoker):
    """Return canned results for the built-in action names."""

    def __init__(
        self,
        failure_rate: float = 0.0,
        rng: Optional[random.Random] = None,
        latency: float = 0.0,
    ) -> None:
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self.failure_rate = failure_rate
        self.latency = latency
        self._rng = rng or random.Random()

    async def invoke(
        self, action_name: str, config: Dict[str, Any], context: ExecutionContext
    ) -> Any:
        if self.latency:
            await asyncio.sleep(self.latency)

        if action_name == "slack_invite":
            channel = config.get("channel", "#general")
            if self.failure_rate and self._rng.random() < self.failure_rate:
                logger.info(f"Injecting simulated failure for {action_name}")
                raise ActionFailure(
                    f"404 Channel Not Found: {channel}",
                    details={"status_code": 404, "channel": channel},
                )
            return {
                "success": True,
                "channel": channel,
                "message": "User invited to Slack",
            }

        if action_name == "email_send":
            return {
                "success": True,
                "to": config.get("to", "user@example.com"),
                "message_id": f"msg_{int(time.time() * 1000)}",
            }

        if action_name == "http_request":
            return {
                "success": True,
                "status": 200,
                "data": {"message": "Request completed"},
            }

        if action_name == "delay_timer":
            duration = config.get("duration", 1000)
            await asyncio.sleep(duration / 1000)
            return {"success": True, "delayed": duration}

        if action_name in {kind.value for kind in StepKind}:
            return {"success": True, "kind": action_name}

        return {"success": True, "message": f"Executed {action_name}"}
