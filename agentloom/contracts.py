"""Core data contracts for agentloom workflows."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Annotated,
    Any,
    Callable,
    Dict,
    FrozenSet,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import (
    DEFAULT_CONCAT_SEPARATOR,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_QUALITY_THRESHOLD,
)
from .errors import ErrorKind

WorkflowType = Literal["sequential", "parallel", "routing", "evaluator-optimizer"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModelSelection(BaseModel):
    """Provider, model and sampling parameters for one agent."""

    model_config = ConfigDict(frozen=True)

    provider: str
    model_id: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.provider}:{self.model_id}"


class AgentDefinition(BaseModel):
    """Identity and prompt configuration for one logical agent."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    role: str = "assistant"
    system_prompt: str
    model: Optional[ModelSelection] = None
    max_steps: Optional[int] = Field(default=None, ge=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RetryPolicy(BaseModel):
    """How often and how quickly a failed step is retried."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=0, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=1.0, ge=1.0)
    jitter: float = Field(default=0.0, ge=0)
    retryable_errors: FrozenSet[ErrorKind] = frozenset(
        {ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT}
    )

    def is_retryable(self, kind: ErrorKind) -> bool:
        return kind in self.retryable_errors


# ---------------------------------------------------------------------------
# Workflow configuration


class WorkflowConfig(BaseModel):
    """Immutable execution plan shared by every topology."""

    model_config = ConfigDict(frozen=True)

    type: WorkflowType
    agents: List[AgentDefinition] = Field(default_factory=list)
    retry: Optional[RetryPolicy] = None
    timeout: Optional[float] = Field(default=None, gt=0)
    step_timeout: Optional[float] = Field(default=None, gt=0)
    debug: bool = False

    @model_validator(mode="after")
    def _unique_agent_ids(self) -> "WorkflowConfig":
        ids = [agent.id for agent in self.agents]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate agent ids: {', '.join(duplicates)}")
        return self


class SequentialWorkflowConfig(WorkflowConfig):
    """Chain agents, feeding each output into the next agent."""

    type: Literal["sequential"] = "sequential"
    include_previous_context: bool = False
    transform_output: Optional[Callable[[str, int], str]] = None
    should_stop: Optional[Callable[[str, int], bool]] = None

    @model_validator(mode="after")
    def _require_agents(self) -> "SequentialWorkflowConfig":
        if not self.agents:
            raise ValueError("At least one agent is required")
        return self


AggregationStrategy = Literal["concatenate", "vote", "first", "custom"]


class ParallelWorkflowConfig(WorkflowConfig):
    """Fan the same input out to every agent and combine the results."""

    type: Literal["parallel"] = "parallel"
    aggregation: AggregationStrategy = "concatenate"
    aggregate_results: Optional[Callable[..., str]] = None
    separator: str = DEFAULT_CONCAT_SEPARATOR
    include_agent_headers: bool = True
    synthesizer_agent: Optional[AgentDefinition] = None
    max_wait: Optional[float] = Field(default=None, gt=0)
    require_min: Optional[int] = Field(default=None, ge=1)
    proceed_on_quorum: bool = False
    cancel_pending: bool = False

    @model_validator(mode="after")
    def _check_branches(self) -> "ParallelWorkflowConfig":
        if not self.agents:
            raise ValueError("At least one agent is required")
        if self.require_min is not None and self.require_min > len(self.agents):
            raise ValueError(
                f"require_min={self.require_min} exceeds the number of agents ({len(self.agents)})"
            )
        if self.aggregation == "custom" and self.aggregate_results is None:
            raise ValueError("Custom aggregation requires aggregate_results")
        return self

    @property
    def quorum(self) -> int:
        """Successes needed: ``require_min``, else one for ``first``, else all."""
        if self.require_min is not None:
            return self.require_min
        return 1 if self.aggregation == "first" else len(self.agents)


class Classification(BaseModel):
    """Parsed router output."""

    route_ids: List[str] = Field(default_factory=list)
    reasoning: Optional[str] = None
    confidence: Optional[float] = None
    raw: str = ""


class RouteDefinition(BaseModel):
    """A specialised agent reachable through the router."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    triggers: List[str] = Field(default_factory=list)
    agent: AgentDefinition
    priority: int = 0
    condition: Optional[Callable[[str, Classification], bool]] = None


class RoutingWorkflowConfig(WorkflowConfig):
    """Classify the input, then delegate to exactly one specialised agent."""

    type: Literal["routing"] = "routing"
    router_agent: AgentDefinition
    classification_prompt: Optional[str] = None
    routes: List[RouteDefinition] = Field(default_factory=list)
    fallback_agent: Optional[AgentDefinition] = None
    with_explanation: bool = False
    include_routing_explanation: bool = False
    select_route: Optional[
        Callable[[str, str, List[RouteDefinition]], Optional[RouteDefinition]]
    ] = None
    classification_parser: Optional[Any] = None

    @model_validator(mode="after")
    def _check_routes(self) -> "RoutingWorkflowConfig":
        if not self.routes and self.fallback_agent is None:
            raise ValueError("Routing requires at least one route or a fallback agent")
        ids = [route.id for route in self.routes]
        if len(ids) != len(set(ids)):
            raise ValueError("Route ids must be unique")
        return self


class EvaluatorOptimizerWorkflowConfig(WorkflowConfig):
    """Generate, evaluate and refine until the quality bar is met."""

    type: Literal["evaluator-optimizer"] = "evaluator-optimizer"
    generator_agent: AgentDefinition
    evaluator_agent: AgentDefinition
    optimizer_agent: AgentDefinition
    evaluation_criteria: Optional[str] = None
    quality_threshold: float = Field(default=DEFAULT_QUALITY_THRESHOLD, ge=0, le=100)
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    min_improvement: Optional[float] = None
    return_all_iterations: bool = False
    evaluation_parser: Optional[Any] = None
    should_stop: Optional[Callable[..., bool]] = None
    fail_policy: Literal["strict", "best-effort"] = "strict"


AnyWorkflowConfig = Annotated[
    Union[
        SequentialWorkflowConfig,
        ParallelWorkflowConfig,
        RoutingWorkflowConfig,
        EvaluatorOptimizerWorkflowConfig,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Run records


class TokenUsage(BaseModel):
    """Token accounting reported by the invoker."""

    prompt: int = 0
    completion: int = 0
    total: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt=self.prompt + other.prompt,
            completion=self.completion + other.completion,
            total=self.total + other.total,
        )


class InvocationResult(BaseModel):
    """Final text produced by one agent invocation."""

    text: str
    finish_reason: Optional[str] = "stop"
    usage: Optional[TokenUsage] = None


class WorkflowStep(BaseModel):
    """One executed agent invocation, retries collapsed into a single entry."""

    model_config = ConfigDict(frozen=True)

    id: str
    agent_id: str
    agent_name: str
    input: str
    output: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    attempts: int = 1
    attempt_errors: List[str] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime
    duration: float = 0.0
    finish_reason: Optional[str] = None
    tokens_used: Optional[TokenUsage] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (WorkflowStatus.PENDING, WorkflowStatus.RUNNING)


class WorkflowState(BaseModel):
    """Mutable run record owned by a single executor."""

    workflow_id: str = Field(default_factory=lambda: f"wf_{uuid.uuid4().hex[:12]}")
    type: WorkflowType
    status: WorkflowStatus = WorkflowStatus.PENDING
    steps: List[WorkflowStep] = Field(default_factory=list)
    current_step_index: int = 0
    total_steps: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    result: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WorkflowExecutionResult(BaseModel):
    """Terminal snapshot handed back to the caller."""

    status: WorkflowStatus
    result: Optional[str] = None
    error: Optional[str] = None
    steps: List[WorkflowStep] = Field(default_factory=list)
    execution_time: float = 0.0
    total_tokens: TokenUsage = Field(default_factory=TokenUsage)
    state: WorkflowState


ProgressEventType = Literal[
    "workflow-start",
    "step-start",
    "step-progress",
    "step-complete",
    "step-error",
    "workflow-complete",
    "workflow-error",
]


class ProgressEvent(BaseModel):
    """Progress notification emitted while a workflow runs."""

    type: ProgressEventType
    workflow_id: str
    step_id: Optional[str] = None
    agent_id: Optional[str] = None
    step: Optional[WorkflowStep] = None
    delta: Optional[str] = None
    error: Optional[str] = None
    result: Optional[str] = None
    state: Optional[WorkflowState] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class ExecutionOptions(BaseModel):
    """Arguments for a single ``execute()`` call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    conversation_id: str
    input: str
    context: Dict[str, Any] = Field(default_factory=dict)
    on_progress: Optional[Callable[[ProgressEvent], Any]] = None
    abort_signal: Optional[asyncio.Event] = None


# ---------------------------------------------------------------------------
# Evaluator-optimizer records


class EvaluationResult(BaseModel):
    """Structured reading of an evaluator's verdict."""

    score: float = Field(ge=0, le=100)
    feedback: str = ""
    acceptable: bool = False
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    raw: str = ""


class IterationResult(BaseModel):
    """One generate/evaluate/optimize cycle."""

    iteration: int
    output: str
    evaluation: EvaluationResult
    optimized_output: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Conversation log


class ConversationMessage(BaseModel):
    """Message appended to the external conversation log."""

    id: str = Field(default_factory=lambda: f"msg_{uuid.uuid4().hex[:12]}")
    conversation_id: str
    role: Literal["user", "assistant", "system"]
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


