"""Error taxonomy for agentloom workflow execution."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .contracts import WorkflowStep


class ErrorKind(str, Enum):
    """Distinguishable failure kinds used by retry classification."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    PROVIDER_ERROR = "provider_error"
    INVALID_REQUEST = "invalid_request"
    PARSE_ERROR = "parse_error"
    CANCELLED = "cancelled"
    TIMEOUT_BUDGET = "timeout_budget"


class AgentloomError(Exception):
    """Base class for all agentloom errors."""


class WorkflowConfigError(AgentloomError):
    """Malformed workflow configuration or execution options."""


class WorkflowStateError(AgentloomError):
    """Illegal state machine transition, e.g. re-running without ``reset()``."""


class AgentInvocationError(AgentloomError):
    """Raised by an invoker when an agent call fails."""

    def __init__(
        self, message: str, kind: ErrorKind = ErrorKind.PROVIDER_ERROR
    ) -> None:
        super().__init__(message)
        self.kind = ErrorKind(kind)


class OutputParseError(AgentInvocationError):
    """Agent output could not be parsed into the expected structure."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message, ErrorKind.PARSE_ERROR)
        self.raw = raw


class StepFailedError(AgentloomError):
    """A step failed after its retry budget was exhausted."""

    def __init__(self, step: "WorkflowStep", kind: ErrorKind) -> None:
        super().__init__(step.error or f"Step {step.id} failed")
        self.step = step
        self.kind = kind


class BudgetExceededError(AgentloomError):
    """A step or workflow deadline elapsed."""

    def __init__(self, scope: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"{scope.capitalize()} timeout exceeded")
        self.scope = scope
        self.kind = ErrorKind.TIMEOUT_BUDGET


class WorkflowCancelledError(AgentloomError):
    """The run was cancelled by the caller."""

    def __init__(self, message: str = "Workflow cancelled by user") -> None:
        super().__init__(message)
        self.kind = ErrorKind.CANCELLED


class WorkflowError(AgentloomError):
    """Topology-level failure that ends the run as ``failed``."""


def classify_error(error: BaseException) -> ErrorKind:
    """Return the :class:`ErrorKind` for ``error``."""
    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    return ErrorKind.PROVIDER_ERROR


__all__ = [
    "ErrorKind",
    "AgentloomError",
    "WorkflowConfigError",
    "WorkflowStateError",
    "AgentInvocationError",
    "OutputParseError",
    "StepFailedError",
    "BudgetExceededError",
    "WorkflowCancelledError",
    "WorkflowError",
    "classify_error",
]
