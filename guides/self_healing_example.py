"""Example running an onboarding workflow whose Slack step needs healing.

The simulated Slack integration rejects the misspelled channel. With an
``OPENAI_API_KEY`` set, the fix proposer suggests a corrected channel and the
step is retried once.
"""

import asyncio
import logging
import random

from mendflow import (
    ExecutionOrchestrator,
    LLMFixProposer,
    SimulatedActionInvoker,
    Step,
    Workflow,
    get_repository,
)
from mendflow.status import get_healing_events


async def main():
    logging.basicConfig(level=logging.INFO)

    workflow = Workflow(
        id="onboarding",
        name="New hire onboarding",
        steps=[
            Step(id="invite", action_name="slack_invite", config={"channel": "#general-test"}),
            Step(id="welcome", action_name="email_send", config={"to": "new.hire@example.com"}),
        ],
    )

    repository = get_repository()
    await repository.save_workflow(workflow)

    # Fails the first slack_invite call only
    invoker = SimulatedActionInvoker(failure_rate=0.5, rng=random.Random(1))
    orchestrator = ExecutionOrchestrator(repository, invoker, proposer=LLMFixProposer())

    execution = await orchestrator.execute(workflow, "demo-user", {"name": "Ada"})
    print(f"Execution {execution.execution_id}: {execution.status.value}")

    for heal in await get_healing_events(repository, execution.execution_id) or []:
        print(f"Healed {heal.step}: {heal.error} -> {heal.fix_applied}")
        print(f"  {heal.ai_reasoning}")


if __name__ == "__main__":
    asyncio.run(main())
