"""Agentloom: multi-agent workflow orchestration for LLM agents."""

from .config import AgentloomConfig, ExecutionSettings, load_config, load_workflow_config
from .contracts import (
    AgentDefinition,
    EvaluatorOptimizerWorkflowConfig,
    ExecutionOptions,
    ModelSelection,
    ParallelWorkflowConfig,
    ProgressEvent,
    RetryPolicy,
    RouteDefinition,
    RoutingWorkflowConfig,
    SequentialWorkflowConfig,
    WorkflowExecutionResult,
    WorkflowState,
    WorkflowStatus,
    WorkflowStep,
)
from .conversation import get_conversation_store
from .errors import AgentInvocationError, ErrorKind
from .invokers import get_invoker
from .workflows import create_executor

__version__ = "0.1.0"
__all__ = [
    "AgentDefinition",
    "AgentInvocationError",
    "AgentloomConfig",
    "ErrorKind",
    "EvaluatorOptimizerWorkflowConfig",
    "ExecutionOptions",
    "ExecutionSettings",
    "ModelSelection",
    "ParallelWorkflowConfig",
    "ProgressEvent",
    "RetryPolicy",
    "RouteDefinition",
    "RoutingWorkflowConfig",
    "SequentialWorkflowConfig",
    "WorkflowExecutionResult",
    "WorkflowState",
    "WorkflowStatus",
    "WorkflowStep",
    "create_executor",
    "get_conversation_store",
    "get_invoker",
    "load_config",
    "load_workflow_config",
]
