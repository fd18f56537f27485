"""Command line interface for running and inspecting mendflow executions."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from mendflow import ExecutionOrchestrator, get_repository, load_config
from mendflow.actions import SimulatedActionInvoker, default_registry
from mendflow.classifier import FailureClassifier
from mendflow.cli_utils.workflow import (
    format_event_line,
    format_step_line,
    load_workflow_file,
    parse_input_variables,
)
from mendflow.healing import LLMFixProposer, build_healing_agent
from mendflow.status import get_execution_status, get_healing_events

app = typer.Typer(help="CLI for mendflow workflow executions")

execution_app = typer.Typer(help="Commands for inspecting executions")

app.add_typer(execution_app, name="execution")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v")) -> None:
    """mendflow CLI entry point."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("run")
def run_workflow(
    workflow_path: Path,
    inputs: Optional[str] = typer.Option(
        None, "--input", help="JSON object of input variables"
    ),
    user_id: str = typer.Option("cli", help="User the execution runs on behalf of"),
    healing: bool = typer.Option(True, help="Ask the fix proposer to heal failed steps"),
    failure_rate: float = typer.Option(
        0.0, min=0.0, max=1.0, help="Inject simulated slack_invite failures"
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """
    Execute a workflow file and print the final status.

    Actions without a real integration run against simulated stand-ins.
    With healing enabled the configured language model proposes fixes for
    healable failures.

    Example:
        mendflow run ./onboarding.yaml --input '{"email": "a@b.com"}'
        mendflow run ./onboarding.yaml --failure-rate 1.0 --no-healing
    """
    if not workflow_path.exists():
        typer.secho(f"Workflow file not found: {workflow_path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        workflow = load_workflow_file(workflow_path)
        variables = parse_input_variables(inputs)
    except ValueError as exc:
        typer.secho(f"Invalid workflow input: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    config = load_config(config_path)
    repository = (
        get_repository(config.database_url) if config.database_url else get_repository()
    )
    invoker = default_registry(
        fallback=SimulatedActionInvoker(failure_rate=failure_rate)
    )
    proposer = None
    if healing and config.healing.enabled:
        proposer = LLMFixProposer(
            build_healing_agent(config.healing.model, config.healing.temperature)
        )
    orchestrator = ExecutionOrchestrator(
        repository,
        invoker,
        proposer=proposer,
        classifier=FailureClassifier(
            config.classifier.extra_permanent_patterns,
            config.classifier.extra_healable_patterns,
        ),
        settings=config.execution,
    )

    async def _run():
        await repository.save_workflow(workflow)
        try:
            return await orchestrator.execute(workflow, user_id, variables)
        finally:
            await invoker.close()

    execution = asyncio.run(_run())
    typer.echo(f"Execution {execution.execution_id}: {execution.status.value}")
    if execution.error_message:
        typer.echo(f"Error: {execution.error_message}")
    if execution.status.value != "completed":
        raise typer.Exit(code=1)


@execution_app.command("list")
def execution_list(workflow_id: Optional[str] = None) -> None:
    """
    List executions with their current status.

    Example:
        mendflow execution list
        # Output: 3f2c...    onboarding    completed
    """
    repo = get_repository()
    executions = asyncio.run(repo.list_executions(workflow_id))
    if not executions:
        typer.echo("No executions found")
        return
    for ex in executions:
        typer.echo(f"{ex.execution_id}\t{ex.workflow_id}\t{ex.status.value}")


@execution_app.command("show")
def execution_show(execution_id: str) -> None:
    """Show an execution with its step records and event trail."""
    repo = get_repository()

    async def _load():
        execution = await repo.get_execution(execution_id)
        if execution is None:
            return None, [], []
        steps = await repo.list_step_executions(execution_id)
        events = await repo.list_events(execution_id)
        return execution, steps, events

    execution, steps, events = asyncio.run(_load())
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)

    typer.echo(f"Execution {execution.execution_id}: {execution.status.value}")
    typer.echo(f"Workflow: {execution.workflow_id}")
    if execution.input_variables:
        typer.echo(f"Inputs: {json.dumps(execution.input_variables)}")
    if execution.error_message:
        typer.echo(f"Error: {execution.error_message}")
    typer.echo("Steps:")
    for step in steps:
        typer.echo(format_step_line(step))
    typer.echo("Events:")
    for event in events:
        typer.echo(format_event_line(event))


@execution_app.command("status")
def execution_status(execution_id: str) -> None:
    """Print the polling status view of an execution as JSON."""
    view = asyncio.run(get_execution_status(get_repository(), execution_id))
    if view is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    typer.echo(view.model_dump_json(indent=2))


@execution_app.command("heals")
def execution_heals(execution_id: str) -> None:
    """List the AI-applied fixes of an execution."""
    events = asyncio.run(get_healing_events(get_repository(), execution_id))
    if events is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    if not events:
        typer.echo("No healing events")
        return
    for event in events:
        typer.echo(f"- {event.step} (step {event.step_index}): {event.error}")
        typer.echo(f"    fix: {event.fix_applied}")
        typer.echo(f"    reasoning: {event.ai_reasoning}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
