import pytest

from mendflow import ExecutionOrchestrator
from mendflow.actions import ActionRegistry, SimulatedActionInvoker
from mendflow.contracts import SelfHealingResult, Step, Workflow
from mendflow.errors import ActionFailure
from mendflow.persistence import ExecutionStatus, InMemoryExecutionRepository
from mendflow.status import get_execution_status, get_healing_events


class FixedProposer:
    async def propose(self, context):
        return SelfHealingResult(
            fixed_config={"channel": "general"}, reasoning="dropped the prefix", confidence=0.85
        )


WORKFLOW = Workflow(
    id="onboarding",
    steps=[
        Step(id="invite", action_name="slack_invite", config={"channel": "#general-test"}),
        Step(id="welcome", action_name="email_send", config={"to": "a@b.com"}),
    ],
)


async def _healed_execution(repo):
    registry = ActionRegistry(fallback=SimulatedActionInvoker())

    @registry.action("slack_invite")
    def slack_invite(config, context):
        if config["channel"] != "general":
            raise ActionFailure(f"404 Channel Not Found: {config['channel']}")
        return {"success": True}

    await repo.save_workflow(WORKFLOW)
    orchestrator = ExecutionOrchestrator(repo, registry, proposer=FixedProposer())
    return await orchestrator.execute(WORKFLOW, "u1")


@pytest.mark.asyncio
async def test_execution_status_view():
    repo = InMemoryExecutionRepository()
    execution = await _healed_execution(repo)

    view = await get_execution_status(repo, execution.execution_id)

    assert view.status is ExecutionStatus.COMPLETED
    assert view.total_steps == 2
    assert view.current_step == "welcome"
    assert view.current_step_index == 1
    assert view.logs[0].startswith("[")
    assert view.logs[0].endswith("] Starting step: invite (action)")
    assert view.error_message is None
    assert await get_execution_status(repo, "missing") is None


@pytest.mark.asyncio
async def test_healing_events_view():
    repo = InMemoryExecutionRepository()
    execution = await _healed_execution(repo)

    (heal,) = await get_healing_events(repo, execution.execution_id)

    assert heal.step == "invite"
    assert heal.step_index == 0
    assert heal.error == "404 Channel Not Found: #general-test"
    assert heal.fix_applied == '{"channel": "general"}'
    assert heal.ai_reasoning == "dropped the prefix"
    assert heal.retry_count == 1
    assert await get_healing_events(repo, "missing") is None
