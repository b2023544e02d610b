"""Fluent construction helpers for workflow configs."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..config import parse_workflow_config
from ..contracts import (
    AgentDefinition,
    EvaluatorOptimizerWorkflowConfig,
    ParallelWorkflowConfig,
    RetryPolicy,
    RouteDefinition,
    RoutingWorkflowConfig,
    SequentialWorkflowConfig,
    WorkflowConfig,
)
from ..errors import WorkflowConfigError


class WorkflowBuilder:
    """Accumulate agents and options, then validate them into a config."""

    def __init__(self, type: Optional[str] = None) -> None:
        self._type = type
        self._agents: List[AgentDefinition] = []
        self._options: Dict[str, Any] = {}

    def type(self, type: str) -> "WorkflowBuilder":
        self._type = type
        return self

    def add_agent(self, agent: AgentDefinition) -> "WorkflowBuilder":
        self._agents.append(agent)
        return self

    def add_agents(self, agents: Iterable[AgentDefinition]) -> "WorkflowBuilder":
        self._agents.extend(agents)
        return self

    def with_retry(self, max_retries: int, retry_delay: float = 1.0, **policy: Any) -> "WorkflowBuilder":
        self._options["retry"] = RetryPolicy(
            max_retries=max_retries, retry_delay=retry_delay, **policy
        )
        return self

    def timeout(self, seconds: float) -> "WorkflowBuilder":
        self._options["timeout"] = seconds
        return self

    def step_timeout(self, seconds: float) -> "WorkflowBuilder":
        self._options["step_timeout"] = seconds
        return self

    def debug(self, enabled: bool = True) -> "WorkflowBuilder":
        self._options["debug"] = enabled
        return self

    def option(self, **options: Any) -> "WorkflowBuilder":
        """Set topology-specific fields, e.g. ``aggregation="vote"``."""
        self._options.update(options)
        return self

    def build(self) -> WorkflowConfig:
        if not self._type:
            raise WorkflowConfigError("Workflow type is required")
        data = {"type": self._type, "agents": list(self._agents), **self._options}
        try:
            return parse_workflow_config(data)
        except ValidationError as e:
            raise WorkflowConfigError(f"Invalid {self._type} workflow: {e}") from e


def create_sequential_workflow(
    agents: Iterable[AgentDefinition], **options: Any
) -> SequentialWorkflowConfig:
    return WorkflowBuilder("sequential").add_agents(agents).option(**options).build()


def create_parallel_workflow(
    agents: Iterable[AgentDefinition], **options: Any
) -> ParallelWorkflowConfig:
    return WorkflowBuilder("parallel").add_agents(agents).option(**options).build()


def create_routing_workflow(
    router_agent: AgentDefinition,
    routes: Iterable[RouteDefinition],
    **options: Any,
) -> RoutingWorkflowConfig:
    return (
        WorkflowBuilder("routing")
        .option(router_agent=router_agent, routes=list(routes), **options)
        .build()
    )


def create_evaluator_optimizer_workflow(
    generator_agent: AgentDefinition,
    evaluator_agent: AgentDefinition,
    optimizer_agent: AgentDefinition,
    **options: Any,
) -> EvaluatorOptimizerWorkflowConfig:
    return (
        WorkflowBuilder("evaluator-optimizer")
        .option(
            generator_agent=generator_agent,
            evaluator_agent=evaluator_agent,
            optimizer_agent=optimizer_agent,
            **options,
        )
        .build()
    )
