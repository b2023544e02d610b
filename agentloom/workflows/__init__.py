"""Workflow executors and the executor factory."""

from __future__ import annotations

from typing import Dict, Optional, Type

from ..config import ExecutionSettings
from ..contracts import WorkflowConfig
from ..conversation import ConversationStore
from ..errors import WorkflowConfigError
from ..invokers import AgentInvoker
from .base import WorkflowExecutor
from .builder import (
    WorkflowBuilder,
    create_evaluator_optimizer_workflow,
    create_parallel_workflow,
    create_routing_workflow,
    create_sequential_workflow,
)
from .evaluator import EvaluatorOptimizerExecutor
from .parallel import ParallelExecutor
from .routing import RoutingExecutor
from .sequential import SequentialExecutor

EXECUTORS: Dict[str, Type[WorkflowExecutor]] = {
    "sequential": SequentialExecutor,
    "parallel": ParallelExecutor,
    "routing": RoutingExecutor,
    "evaluator-optimizer": EvaluatorOptimizerExecutor,
}


def create_executor(
    config: WorkflowConfig,
    invoker: AgentInvoker,
    conversation_store: Optional[ConversationStore] = None,
    settings: Optional[ExecutionSettings] = None,
) -> WorkflowExecutor:
    """Factory function returning a fresh executor for ``config.type``."""

    executor_cls = EXECUTORS.get(config.type)
    if executor_cls is None:
        raise WorkflowConfigError(f"Unsupported workflow type: {config.type}")
    return executor_cls(
        config, invoker, conversation_store=conversation_store, settings=settings
    )


__all__ = [
    "WorkflowExecutor",
    "SequentialExecutor",
    "ParallelExecutor",
    "RoutingExecutor",
    "EvaluatorOptimizerExecutor",
    "create_executor",
    "WorkflowBuilder",
    "create_sequential_workflow",
    "create_parallel_workflow",
    "create_routing_workflow",
    "create_evaluator_optimizer_workflow",
]
