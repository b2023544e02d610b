"""CLI tests for the workflow command group."""

from pathlib import Path

from typer.testing import CliRunner

from agentloom.cli import app

WORKFLOW = """
type: sequential
agents:
  - id: drafter
    name: Drafter
    system_prompt: Draft an answer.
  - id: polisher
    name: Polisher
    system_prompt: Polish the draft.
"""


def _write_files(tmp_path: Path, responses: str) -> tuple[Path, Path]:
    workflow_path = tmp_path / "workflow.yaml"
    workflow_path.write_text(WORKFLOW)
    config_path = tmp_path / "agentloom.yaml"
    config_path.write_text(f"invoker:\n  backend: scripted\n  responses:\n{responses}")
    return workflow_path, config_path


def test_workflow_run_prints_result(tmp_path, monkeypatch):
    monkeypatch.delenv("AGENTLOOM_INVOKER", raising=False)
    workflow_path, config_path = _write_files(
        tmp_path, "    drafter: rough answer\n    polisher: polished answer\n"
    )

    runner = CliRunner()
    result = runner.invoke(
        app,
        ["workflow", "run", str(workflow_path), "--input", "Question?", "--config", str(config_path)],
    )

    assert result.exit_code == 0, f"Command failed with exit code {result.exit_code}. Output: {result.stdout}"
    assert "polished answer" in result.stdout


def test_workflow_run_verbose_shows_steps(tmp_path, monkeypatch):
    monkeypatch.delenv("AGENTLOOM_INVOKER", raising=False)
    workflow_path, config_path = _write_files(tmp_path, "    polisher: done\n")

    runner = CliRunner()
    result = runner.invoke(
        app,
        ["workflow", "run", str(workflow_path), "-i", "Q", "--config", str(config_path), "--verbose"],
    )

    assert result.exit_code == 0
    assert "Drafter done" in result.stdout
    assert "Polisher done" in result.stdout


def test_workflow_run_exits_nonzero_when_not_completed(tmp_path, monkeypatch):
    monkeypatch.delenv("AGENTLOOM_INVOKER", raising=False)
    _, config_path = _write_files(tmp_path, "    router: no idea\n")
    workflow_path = tmp_path / "routing.yaml"
    workflow_path.write_text(
        """
type: routing
router_agent: {id: router, name: Router, system_prompt: Classify.}
routes:
  - id: billing
    name: Billing
    agent: {id: billing_agent, name: Billing Agent, system_prompt: Help with bills.}
"""
    )

    runner = CliRunner()
    result = runner.invoke(
        app,
        ["workflow", "run", str(workflow_path), "-i", "Q", "--config", str(config_path)],
    )

    assert result.exit_code == 1
    assert "failed: No routes matched" in result.stdout


def test_workflow_run_rejects_invalid_definition(tmp_path, monkeypatch):
    monkeypatch.delenv("AGENTLOOM_INVOKER", raising=False)
    workflow_path, config_path = _write_files(tmp_path, "    drafter: ok\n")
    workflow_path.write_text(WORKFLOW.replace("id: polisher", "id: drafter"))

    runner = CliRunner()
    result = runner.invoke(
        app,
        ["workflow", "run", str(workflow_path), "-i", "Q", "--config", str(config_path)],
    )

    assert result.exit_code == 1
    assert "Invalid workflow definition" in result.stdout


def test_workflow_run_missing_file(tmp_path):
    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "run", str(tmp_path / "nope.yaml"), "-i", "Q"])

    assert result.exit_code == 1
    assert "Workflow file not found" in result.stdout


def test_workflow_validate(tmp_path):
    workflow_path = tmp_path / "workflow.yaml"
    workflow_path.write_text(WORKFLOW)

    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "validate", str(workflow_path)])

    assert result.exit_code == 0
    assert "Valid sequential workflow (2 agent(s))" in result.stdout
