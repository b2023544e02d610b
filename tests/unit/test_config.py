"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from agentloom.config import load_config, load_workflow_config
from agentloom.contracts import (
    EvaluatorOptimizerWorkflowConfig,
    ParallelWorkflowConfig,
    RoutingWorkflowConfig,
    SequentialWorkflowConfig,
)
from agentloom.errors import ErrorKind
from agentloom.invokers import ScriptedInvoker, get_invoker


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
invoker:
  backend: scripted
  responses:
    writer: hello
execution:
  step_timeout: 30
  retry:
    max_retries: 2
    retryable_errors: [timeout, parse_error]
log_level: DEBUG
"""
    )
    monkeypatch.setenv("AGENTLOOM_CONFIG", str(config_path))

    config = load_config()
    assert config.invoker.backend == "scripted"
    assert config.invoker.responses == {"writer": "hello"}
    assert config.execution.step_timeout == 30
    assert config.execution.retry.max_retries == 2
    assert config.execution.retry.retryable_errors == {ErrorKind.TIMEOUT, ErrorKind.PARSE_ERROR}
    assert config.log_level == "DEBUG"


def test_load_config_defaults_when_missing(tmp_path, monkeypatch):
    monkeypatch.delenv("AGENTLOOM_CONFIG", raising=False)
    monkeypatch.delenv("AGENTLOOM_INVOKER", raising=False)
    monkeypatch.delenv("AGENTLOOM_DEFAULT_MODEL", raising=False)
    monkeypatch.chdir(tmp_path)

    config = load_config()
    assert config.invoker.backend == "pydantic-ai"
    assert config.execution.retry is None
    assert config.log_level == "INFO"


def test_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "agentloom.yaml"
    config_path.write_text("invoker:\n  backend: pydantic-ai\n")
    monkeypatch.setenv("AGENTLOOM_INVOKER", "scripted")
    monkeypatch.setenv("AGENTLOOM_DEFAULT_MODEL", "test")

    config = load_config(str(config_path))
    assert config.invoker.backend == "scripted"
    assert config.invoker.default_model == "test"


def test_get_invoker_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("invoker:\n  backend: scripted\n  responses:\n    a: [one, two]\n")
    monkeypatch.setenv("AGENTLOOM_CONFIG", str(config_path))
    monkeypatch.delenv("AGENTLOOM_INVOKER", raising=False)

    invoker = get_invoker()
    assert isinstance(invoker, ScriptedInvoker)


def test_get_invoker_rejects_unknown_backend():
    with pytest.raises(ValueError):
        get_invoker("carrier-pigeon")


def _write(tmp_path, body: str):
    path = tmp_path / "workflow.yaml"
    path.write_text(body)
    return path


def test_load_workflow_config_selects_topology(tmp_path):
    path = _write(
        tmp_path,
        """
type: parallel
aggregation: vote
require_min: 2
agents:
  - id: a
    name: A
    system_prompt: Answer yes or no.
  - id: b
    name: B
    system_prompt: Answer yes or no.
    model:
      provider: openai
      model_id: gpt-4o
      temperature: 0.2
""",
    )
    config = load_workflow_config(path)

    assert isinstance(config, ParallelWorkflowConfig)
    assert config.quorum == 2
    assert config.agents[1].model.qualified_name == "openai:gpt-4o"


@pytest.mark.parametrize(
    "body, expected",
    [
        ("type: sequential\nagents:\n  - {id: a, name: A, system_prompt: x}\n", SequentialWorkflowConfig),
        (
            "type: routing\nrouter_agent: {id: r, name: R, system_prompt: x}\n"
            "fallback_agent: {id: f, name: F, system_prompt: x}\n",
            RoutingWorkflowConfig,
        ),
        (
            "type: evaluator-optimizer\n"
            "generator_agent: {id: g, name: G, system_prompt: x}\n"
            "evaluator_agent: {id: e, name: E, system_prompt: x}\n"
            "optimizer_agent: {id: o, name: O, system_prompt: x}\n",
            EvaluatorOptimizerWorkflowConfig,
        ),
    ],
)
def test_load_workflow_config_each_type(tmp_path, body, expected):
    assert isinstance(load_workflow_config(_write(tmp_path, body)), expected)


def test_workflow_config_rejects_duplicate_agent_ids(tmp_path):
    path = _write(
        tmp_path,
        "type: sequential\nagents:\n"
        "  - {id: a, name: A, system_prompt: x}\n"
        "  - {id: a, name: B, system_prompt: y}\n",
    )
    with pytest.raises(ValidationError):
        load_workflow_config(path)


def test_sequential_requires_agents(tmp_path):
    with pytest.raises(ValidationError):
        load_workflow_config(_write(tmp_path, "type: sequential\nagents: []\n"))
