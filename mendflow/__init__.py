"""Mendflow: Workflow execution with AI-assisted self-healing."""

from .actions import ActionInvoker, ActionRegistry, SimulatedActionInvoker
from .classifier import FailureClassifier, classify, is_healable
from .config import MendflowConfig, load_config
from .contracts import SelfHealingContext, SelfHealingResult, Step, StepKind, Workflow
from .healing import LLMFixProposer
from .orchestrator import CancellationToken, ExecutionOrchestrator
from .persistence import get_repository
from .runner import StepRunner
from .worker import ExecutionWorker

__version__ = "0.1.0"
__all__ = [
    "ActionInvoker",
    "ActionRegistry",
    "SimulatedActionInvoker",
    "FailureClassifier",
    "classify",
    "is_healable",
    "MendflowConfig",
    "load_config",
    "Step",
    "StepKind",
    "Workflow",
    "SelfHealingContext",
    "SelfHealingResult",
    "LLMFixProposer",
    "CancellationToken",
    "ExecutionOrchestrator",
    "StepRunner",
    "ExecutionWorker",
    "get_repository",
]
