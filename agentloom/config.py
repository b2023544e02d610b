from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, TypeAdapter

from .constants import DEFAULT_CONFIG_PATH, DEFAULT_MODEL
from .contracts import AnyWorkflowConfig, RetryPolicy, WorkflowConfig


class InvokerConfig(BaseModel):
    """Configuration for the agent invoker backend."""

    backend: Literal["pydantic-ai", "scripted"] = "pydantic-ai"
    default_model: str = DEFAULT_MODEL
    # Only used by the scripted backend: agent id -> reply or replies.
    responses: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)


class ExecutionSettings(BaseModel):
    """Engine defaults applied when a workflow config leaves them unset."""

    retry: Optional[RetryPolicy] = None
    step_timeout: Optional[float] = Field(default=None, gt=0)
    timeout: Optional[float] = Field(default=None, gt=0)


class AgentloomConfig(BaseModel):
    """Top-level configuration model."""

    invoker: InvokerConfig = InvokerConfig()
    execution: ExecutionSettings = ExecutionSettings()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> AgentloomConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to AGENTLOOM_CONFIG env
            variable or 'agentloom.yaml' in the current directory.
    """

    config_path = path or os.getenv("AGENTLOOM_CONFIG", DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = AgentloomConfig(**data)
    else:
        config = AgentloomConfig()

    env_backend = os.getenv("AGENTLOOM_INVOKER")
    if env_backend:
        config.invoker.backend = env_backend
    env_model = os.getenv("AGENTLOOM_DEFAULT_MODEL")
    if env_model:
        config.invoker.default_model = env_model
    return config


_workflow_adapter: TypeAdapter[WorkflowConfig] = TypeAdapter(AnyWorkflowConfig)


def parse_workflow_config(data: dict) -> WorkflowConfig:
    """Validate a plain mapping into the matching workflow config model."""
    return _workflow_adapter.validate_python(data)


def load_workflow_config(path: Union[str, Path]) -> WorkflowConfig:
    """Load a workflow definition from a YAML file.

    The ``type`` key selects the topology. Callable hooks such as
    ``transform_output`` cannot be expressed in YAML and stay unset.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return parse_workflow_config(data)
