import pytest

from mendflow.contracts import Step, Workflow
from mendflow.errors import VersionConflict
from mendflow.persistence import (
    EventType,
    ExecutionEvent,
    ExecutionRecord,
    ExecutionStatus,
    InMemoryExecutionRepository,
    SQLiteExecutionRepository,
    StepExecutionRecord,
    StepStatus,
)
from mendflow.persistence.models import utcnow


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryExecutionRepository()
    return SQLiteExecutionRepository(tmp_path / "exec.db")


WORKFLOW = Workflow(
    id="wf-1",
    name="Onboarding",
    steps=[
        Step(id="invite", action_name="slack_invite", config={"channel": "#general"}),
        Step(id="end", kind="end"),
    ],
    user_id="u1",
)


@pytest.mark.asyncio
async def test_repository_crud(repo):
    await repo.save_workflow(WORKFLOW)
    stored = await repo.get_workflow("wf-1")
    assert stored == WORKFLOW
    assert await repo.get_workflow("missing") is None

    execution = ExecutionRecord(
        workflow_id="wf-1",
        user_id="u1",
        total_steps=2,
        input_variables={"email": "a@b.com"},
    )
    await repo.create_execution(execution)
    assert (await repo.get_execution(execution.execution_id)).total_steps == 2
    started = utcnow()
    await repo.update_execution(
        execution.execution_id,
        {"status": ExecutionStatus.RUNNING, "started_at": started, "current_step_id": "invite"},
    )

    record = StepExecutionRecord(
        execution_id=execution.execution_id,
        step_id="invite",
        step_index=0,
        step_kind="action",
        action_name="slack_invite",
        status=StepStatus.RUNNING,
        input_data={"channel": "#general"},
    )
    await repo.create_step_execution(record)
    await repo.update_step_execution(
        record.id,
        {
            "status": StepStatus.HEALED,
            "was_healed": True,
            "retry_count": 1,
            "output_data": {"success": True},
        },
    )

    await repo.append_event(
        ExecutionEvent(
            execution_id=execution.execution_id,
            event_type=EventType.STEP_STARTED,
            message="Starting step: invite (action)",
            step_id="invite",
            step_index=0,
        )
    )
    await repo.append_event(
        ExecutionEvent(
            execution_id=execution.execution_id,
            event_type=EventType.SELF_HEALING,
            message="AI applied fix to step: invite",
            original_error="404 Channel Not Found: #x",
            fix_applied='{"channel": "#general"}',
            ai_reasoning="wrong channel",
            retry_count=1,
            metadata={"confidence": 0.9},
        )
    )

    await repo.update_execution(
        execution.execution_id,
        {"status": ExecutionStatus.COMPLETED, "output_result": {"invite": {"success": True}}},
    )

    ex = await repo.get_execution(execution.execution_id)
    assert ex is not None
    assert ex.status is ExecutionStatus.COMPLETED
    assert ex.current_step_id == "invite"
    assert ex.input_variables == {"email": "a@b.com"}
    assert ex.output_result == {"invite": {"success": True}}
    assert ex.started_at == started

    (step,) = await repo.list_step_executions(execution.execution_id)
    assert step.status is StepStatus.HEALED
    assert step.was_healed is True
    assert step.retry_count == 1
    assert step.output_data == {"success": True}
    assert step.input_data == {"channel": "#general"}

    events = await repo.list_events(execution.execution_id)
    assert [e.event_type for e in events] == [EventType.STEP_STARTED, EventType.SELF_HEALING]
    heals = await repo.list_events(execution.execution_id, event_type=EventType.SELF_HEALING)
    assert len(heals) == 1
    assert heals[0].metadata == {"confidence": 0.9}
    assert heals[0].retry_count == 1
    assert len(await repo.list_events(execution.execution_id, limit=1)) == 1

    all_executions = await repo.list_executions()
    assert [e.execution_id for e in all_executions] == [execution.execution_id]
    assert await repo.list_executions("other-workflow") == []


@pytest.mark.asyncio
async def test_terminal_executions_ignore_updates(repo):
    execution = ExecutionRecord(workflow_id="wf-1", user_id="u1")
    await repo.create_execution(execution)
    await repo.update_execution(
        execution.execution_id,
        {"status": ExecutionStatus.FAILED, "error_message": "boom"},
    )
    await repo.update_execution(
        execution.execution_id,
        {"status": ExecutionStatus.COMPLETED, "error_message": None},
    )

    ex = await repo.get_execution(execution.execution_id)
    assert ex.status is ExecutionStatus.FAILED
    assert ex.error_message == "boom"


@pytest.mark.asyncio
async def test_unknown_update_fields_are_rejected(repo):
    execution = ExecutionRecord(workflow_id="wf-1", user_id="u1")
    await repo.create_execution(execution)
    with pytest.raises(ValueError):
        await repo.update_execution(execution.execution_id, {"user_id": "someone-else"})


@pytest.mark.asyncio
async def test_workflow_version_conflict(repo):
    await repo.save_workflow(WORKFLOW)
    new_steps = [Step(id="invite", action_name="slack_invite", config={"channel": "#team"})]

    updated = await repo.update_workflow_steps("wf-1", new_steps, expected_version=1)
    assert updated.version == 2
    assert updated.steps == new_steps

    with pytest.raises(VersionConflict) as excinfo:
        await repo.update_workflow_steps("wf-1", WORKFLOW.steps, expected_version=1)
    assert excinfo.value.current_version == 2
    assert "Current version is 2, but you provided 1" in str(excinfo.value)

    stored = await repo.get_workflow("wf-1")
    assert stored.version == 2
    assert stored.steps == new_steps

    with pytest.raises(KeyError):
        await repo.update_workflow_steps("missing", new_steps, expected_version=1)


@pytest.mark.asyncio
async def test_sqlite_workflow_deleted_during_update_raises_key_error(tmp_path):
    class VanishingRepository(SQLiteExecutionRepository):
        async def get_workflow(self, workflow_id):
            return None

    repo = VanishingRepository(tmp_path / "exec.db")
    await repo.save_workflow(WORKFLOW)

    with pytest.raises(KeyError, match="Workflow not found: wf-1"):
        await repo.update_workflow_steps("wf-1", WORKFLOW.steps, expected_version=1)


def test_sqlite_repository_survives_reopen(tmp_path):
    import asyncio

    path = tmp_path / "exec.db"

    async def write():
        repo = SQLiteExecutionRepository(path)
        execution = ExecutionRecord(workflow_id="wf-1", user_id="u1")
        await repo.create_execution(execution)
        return execution.execution_id

    execution_id = asyncio.run(write())
    reopened = SQLiteExecutionRepository(path)
    ex = asyncio.run(reopened.get_execution(execution_id))
    assert ex is not None
    assert ex.status is ExecutionStatus.PENDING
