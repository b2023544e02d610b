"""Command line interface for running agentloom workflows."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError

from agentloom import create_executor, get_conversation_store, get_invoker, load_config
from agentloom.config import load_workflow_config
from agentloom.contracts import ProgressEvent, WorkflowStatus

app = typer.Typer(help="CLI for agentloom workflows")

workflow_app = typer.Typer(help="Commands for running and checking workflows")

app.add_typer(workflow_app, name="workflow")


@app.callback()
def main() -> None:
    """Agentloom CLI entry point."""
    pass


def _load_or_exit(path: Path):
    if not path.exists():
        typer.secho(f"Workflow file not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        return load_workflow_config(path)
    except (ValidationError, yaml.YAMLError) as e:
        typer.secho(f"Invalid workflow definition: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@workflow_app.command("run")
def workflow_run(
    path: Path,
    input: str = typer.Option(..., "--input", "-i", help="Request passed to the first agent"),
    conversation_id: Optional[str] = typer.Option(
        None, help="Conversation to log messages under (default: random)"
    ),
    config: Optional[Path] = typer.Option(None, help="Path to agentloom.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print step progress"),
) -> None:
    """
    Run a workflow definition once and print its result.

    The workflow topology is chosen by the ``type`` key of the YAML file. The
    invoker backend and engine defaults come from the agentloom config.

    Example:
        agentloom workflow run research.yaml --input "Summarise RFC 9110"
        agentloom workflow run review.yaml -i "Draft a haiku" --config ./agentloom.yaml
    """
    settings = load_config(str(config) if config else None)
    logging.basicConfig(level=logging.DEBUG if verbose else settings.log_level)

    workflow = _load_or_exit(path)
    invoker = get_invoker(config=settings)
    executor = create_executor(
        workflow,
        invoker,
        conversation_store=get_conversation_store(),
        settings=settings.execution,
    )

    def on_progress(event: ProgressEvent) -> None:
        if event.type == "step-complete" and event.step is not None:
            typer.echo(f"[{event.step.id}] {event.step.agent_name} done")
        elif event.type == "step-error":
            typer.secho(f"[{event.step_id}] {event.error}", fg=typer.colors.YELLOW)

    result = asyncio.run(
        executor.execute(
            conversation_id=conversation_id or f"cli_{uuid.uuid4().hex[:8]}",
            input=input,
            on_progress=on_progress if verbose else None,
        )
    )

    if result.status != WorkflowStatus.COMPLETED:
        typer.secho(
            f"Workflow {result.state.workflow_id} {result.status.value}: {result.error}",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)

    typer.echo(result.result or "")
    if verbose:
        typer.echo(
            f"\n{len(result.steps)} step(s) in {result.execution_time:.2f}s, "
            f"{result.total_tokens.total} token(s)"
        )


@workflow_app.command("validate")
def workflow_validate(path: Path) -> None:
    """
    Validate a workflow definition without running it.

    Example:
        agentloom workflow validate research.yaml
    """
    workflow = _load_or_exit(path)
    agents = len(workflow.agents)
    typer.echo(f"Valid {workflow.type} workflow ({agents} agent(s))")


if __name__ == "__main__":
    app()
