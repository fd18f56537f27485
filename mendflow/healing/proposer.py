"""Fix proposer adapter over a language-model agent."""

from __future__ import annotations

import json
import logging
import re
from typing import Optional, Protocol, Union

from pydantic import ValidationError
from pydantic_ai import Agent
from pydantic_ai.models import Model

from ..constants import DEFAULT_HEALING_MODEL, DEFAULT_HEALING_TEMPERATURE
from ..contracts import SelfHealingContext, SelfHealingResult
from ..errors import ProposalError
from .prompts import SYSTEM_PROMPT, build_healing_prompt

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class FixProposer(Protocol):
    """Capability that proposes a corrected step configuration."""

    async def propose(self, context: SelfHealingContext) -> SelfHealingResult:
        """Return a proposal or raise ``ProposalError``."""


def build_healing_agent(
    model: Union[str, Model] = DEFAULT_HEALING_MODEL,
    temperature: float = DEFAULT_HEALING_TEMPERATURE,
) -> Agent:
    """Create the agent used by :class:`LLMFixProposer`.

    The model is resolved lazily so constructing the agent does not require
    provider credentials.
    """
    return Agent(
        model,
        output_type=str,
        system_prompt=SYSTEM_PROMPT,
        model_settings={"temperature": temperature},
        defer_model_check=True,
    )


def parse_proposal(content: Optional[str]) -> SelfHealingResult:
    """Decode and validate the raw text returned by the model."""
    if not content or not content.strip():
        raise ProposalError("No response from AI")

    text = content.strip()
    fenced = _FENCE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProposalError(f"AI response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProposalError("AI response must be a JSON object")
    if data.get("fixed_config") is None or not data.get("reasoning"):
        raise ProposalError("Invalid AI response format")
    if data.get("confidence") is None:
        data.pop("confidence", None)

    try:
        return SelfHealingResult.model_validate(data)
    except ValidationError as exc:
        raise ProposalError(f"Invalid AI response format: {exc}") from exc


class LLMFixProposer:
    """Ask a language model for a corrected configuration."""

    def __init__(self, agent: Optional[Agent] = None) -> None:
        self._agent = agent or build_healing_agent()

    async def propose(self, context: SelfHealingContext) -> SelfHealingResult:
        prompt = build_healing_prompt(context)
        try:
            result = await self._agent.run(prompt)
        except Exception as exc:
            logger.error(f"Self-healing AI error for step {context.step_id}: {exc}")
            raise ProposalError("Failed to generate self-healing fix") from exc

        output = result.output
        if not isinstance(output, str):
            output = json.dumps(output, default=str)
        proposal = parse_proposal(output)
        logger.info(
            f"Proposed fix for step {context.step_id} with confidence {proposal.confidence:.2f}"
        )
        return proposal
