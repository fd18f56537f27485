"""Self-healing fix proposers."""

from .prompts import SYSTEM_PROMPT, build_healing_prompt
from .proposer import FixProposer, LLMFixProposer, build_healing_agent, parse_proposal

__all__ = [
    "FixProposer",
    "LLMFixProposer",
    "SYSTEM_PROMPT",
    "build_healing_agent",
    "build_healing_prompt",
    "parse_proposal",
]
