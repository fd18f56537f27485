import asyncio

from typer.testing import CliRunner

import mendflow.persistence as persistence
from mendflow import ExecutionOrchestrator
from mendflow.actions import ActionRegistry, SimulatedActionInvoker
from mendflow.cli import app
from mendflow.contracts import SelfHealingResult, Step, Workflow
from mendflow.errors import ActionFailure
from mendflow.persistence import InMemoryExecutionRepository


def _setup_repo(monkeypatch, tmp_path) -> InMemoryExecutionRepository:
    monkeypatch.setenv("MENDFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("MENDFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    repo = InMemoryExecutionRepository()
    persistence._repository_instance = repo
    return repo


class FixedProposer:
    async def propose(self, context):
        return SelfHealingResult(
            fixed_config={"channel": "general"}, reasoning="removed the prefix", confidence=0.9
        )


def _healed_execution(repo) -> str:
    registry = ActionRegistry(fallback=SimulatedActionInvoker())

    @registry.action("slack_invite")
    def slack_invite(config, context):
        if config["channel"] != "general":
            raise ActionFailure(f"404 Channel Not Found: {config['channel']}")
        return {"success": True}

    workflow = Workflow(
        id="onboarding",
        steps=[Step(id="invite", action_name="slack_invite", config={"channel": "#x"})],
    )
    asyncio.run(repo.save_workflow(workflow))
    orchestrator = ExecutionOrchestrator(repo, registry, proposer=FixedProposer())
    execution = asyncio.run(orchestrator.execute(workflow, "u1"))
    return execution.execution_id


def test_run_command_executes_workflow_file(monkeypatch, tmp_path):
    repo = _setup_repo(monkeypatch, tmp_path)
    workflow_file = tmp_path / "onboarding.yaml"
    workflow_file.write_text(
        """
name: Onboarding
steps:
  - id: invite
    action_name: slack_invite
    config:
      channel: "#general"
  - id: welcome
    action_name: email_send
    config:
      to: a@b.com
"""
    )

    runner = CliRunner()
    result = runner.invoke(
        app, ["run", str(workflow_file), "--input", '{"email": "a@b.com"}', "--no-healing"]
    )
    assert (
        result.exit_code == 0
    ), f"Command failed with exit code {result.exit_code}. Output: {result.stdout}"
    assert "completed" in result.stdout

    (execution,) = asyncio.run(repo.list_executions())
    assert execution.workflow_id == "onboarding"
    assert execution.input_variables == {"email": "a@b.com"}
    stored = asyncio.run(repo.get_workflow("onboarding"))
    assert stored.name == "Onboarding"


def test_run_command_reports_failure(monkeypatch, tmp_path):
    _setup_repo(monkeypatch, tmp_path)
    workflow_file = tmp_path / "flaky.json"
    workflow_file.write_text(
        '{"steps": [{"id": "invite", "action_name": "slack_invite", "config": {"channel": "#x"}}]}'
    )

    runner = CliRunner()
    result = runner.invoke(
        app, ["run", str(workflow_file), "--no-healing", "--failure-rate", "1.0"]
    )
    assert result.exit_code == 1
    assert "failed" in result.stdout
    assert "404 Channel Not Found: #x" in result.stdout


def test_run_command_rejects_bad_input(monkeypatch, tmp_path):
    _setup_repo(monkeypatch, tmp_path)
    runner = CliRunner()

    missing = runner.invoke(app, ["run", str(tmp_path / "nope.yaml")])
    assert missing.exit_code == 1
    assert "Workflow file not found" in missing.stdout

    workflow_file = tmp_path / "wf.yaml"
    workflow_file.write_text("steps: []\n")
    bad_input = runner.invoke(app, ["run", str(workflow_file), "--input", "[1]"])
    assert bad_input.exit_code == 1
    assert "Invalid workflow input" in bad_input.stdout


def test_execution_list_and_show(monkeypatch, tmp_path):
    repo = _setup_repo(monkeypatch, tmp_path)
    runner = CliRunner()

    empty = runner.invoke(app, ["execution", "list"])
    assert empty.exit_code == 0
    assert "No executions found" in empty.stdout

    execution_id = _healed_execution(repo)

    listed = runner.invoke(app, ["execution", "list"])
    assert listed.exit_code == 0
    assert execution_id in listed.stdout
    assert "completed" in listed.stdout

    shown = runner.invoke(app, ["execution", "show", execution_id])
    assert (
        shown.exit_code == 0
    ), f"Command failed with exit code {shown.exit_code}. Output: {shown.stdout}"
    output = shown.stdout
    assert "invite: healed" in output, f"Healed step not found in output: {output}"
    assert "[healed]" in output
    assert "self_healing" in output
    assert "removed the prefix" in output

    missing = runner.invoke(app, ["execution", "show", "missing-id"])
    assert missing.exit_code == 1
    assert "Execution not found" in missing.stdout


def test_execution_status_and_heals(monkeypatch, tmp_path):
    repo = _setup_repo(monkeypatch, tmp_path)
    execution_id = _healed_execution(repo)
    runner = CliRunner()

    status = runner.invoke(app, ["execution", "status", execution_id])
    assert status.exit_code == 0
    assert '"status": "completed"' in status.stdout
    assert '"total_steps": 1' in status.stdout

    heals = runner.invoke(app, ["execution", "heals", execution_id])
    assert heals.exit_code == 0
    assert "invite (step 0): 404 Channel Not Found: #x" in heals.stdout
    assert '{"channel": "general"}' in heals.stdout

    for command in ("status", "heals"):
        missing = runner.invoke(app, ["execution", command, "missing-id"])
        assert missing.exit_code == 1
        assert "Execution not found" in missing.stdout
