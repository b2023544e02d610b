"""Shared execution machinery for every workflow topology.

``WorkflowExecutor`` owns the run state machine, the step wrapper (retry,
deadlines, streaming progress) and cooperative cancellation. Topologies
implement :meth:`WorkflowExecutor._run` and call :meth:`_run_step` for every
agent invocation.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Set,
    Tuple,
    Type,
    TypeVar,
)

from ..config import ExecutionSettings
from ..contracts import (
    AgentDefinition,
    ConversationMessage,
    ExecutionOptions,
    InvocationResult,
    ProgressEvent,
    RetryPolicy,
    TokenUsage,
    WorkflowConfig,
    WorkflowExecutionResult,
    WorkflowState,
    WorkflowStatus,
    WorkflowStep,
)
from ..conversation import ConversationStore
from ..errors import (
    AgentInvocationError,
    BudgetExceededError,
    ErrorKind,
    StepFailedError,
    WorkflowCancelledError,
    WorkflowConfigError,
    WorkflowError,
    WorkflowStateError,
    classify_error,
)
from ..invokers import AgentInvoker
from ..utils.retry import schedule_retry

logger = logging.getLogger(__name__)

ConfigT = TypeVar("ConfigT", bound=WorkflowConfig)
ParsedT = TypeVar("ParsedT")

_TRANSITIONS: Dict[WorkflowStatus, Set[WorkflowStatus]] = {
    WorkflowStatus.PENDING: {WorkflowStatus.RUNNING},
    WorkflowStatus.RUNNING: {
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
        WorkflowStatus.TIMEOUT,
        WorkflowStatus.CANCELLED,
    },
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowExecutor(Generic[ConfigT], metaclass=abc.ABCMeta):
    """Abstract base for all workflow executors."""

    config_type: Type[WorkflowConfig] = WorkflowConfig

    def __init__(
        self,
        config: ConfigT,
        invoker: AgentInvoker,
        conversation_store: Optional[ConversationStore] = None,
        settings: Optional[ExecutionSettings] = None,
    ) -> None:
        if not isinstance(config, self.config_type):
            raise WorkflowConfigError(
                f"{type(self).__name__} requires {self.config_type.__name__}, "
                f"got {type(config).__name__}"
            )
        self.config: ConfigT = config
        self._invoker = invoker
        self._store = conversation_store
        self._settings = settings or ExecutionSettings()
        self._background: Set[asyncio.Future] = set()
        self._init_run()

    # ------------------------------------------------------------------
    # Policy

    @property
    def retry_policy(self) -> RetryPolicy:
        return self.config.retry or self._settings.retry or RetryPolicy()

    @property
    def workflow_timeout(self) -> Optional[float]:
        return self.config.timeout or self._settings.timeout

    @property
    def step_timeout(self) -> Optional[float]:
        return self.config.step_timeout or self._settings.step_timeout

    # ------------------------------------------------------------------
    # Public API

    async def execute(
        self, options: Optional[ExecutionOptions] = None, **kwargs: Any
    ) -> WorkflowExecutionResult:
        """Run the workflow to a terminal state.

        Accepts either an :class:`ExecutionOptions` instance or its fields as
        keyword arguments. Expected failures are reported through the returned
        result's ``status`` and ``error``; only programmer errors raise.
        """
        options = options or ExecutionOptions(**kwargs)
        if not options.input or not options.input.strip():
            raise WorkflowConfigError("Workflow input must be a non-empty string")

        self._transition(WorkflowStatus.RUNNING)
        self._options = options
        started = time.monotonic()
        if self.workflow_timeout:
            self._deadline = started + self.workflow_timeout
        self._state.started_at = _utcnow()

        logger.info(
            f"Starting {self.config.type} workflow {self._state.workflow_id} "
            f"for conversation_id={options.conversation_id}"
        )
        self._emit(
            ProgressEvent(type="workflow-start", workflow_id=self._state.workflow_id)
        )
        await self._record_message("user", options.input)

        try:
            result = await self._run(options.input)
        except WorkflowCancelledError as e:
            self._finish(WorkflowStatus.CANCELLED, error=str(e))
        except BudgetExceededError as e:
            self._finish(WorkflowStatus.TIMEOUT, error=str(e))
        except (StepFailedError, WorkflowError, AgentInvocationError) as e:
            self._finish(WorkflowStatus.FAILED, error=str(e))
        except asyncio.CancelledError:
            self._finish(WorkflowStatus.CANCELLED, error="Workflow task was cancelled")
            raise
        except Exception as e:
            self._finish(WorkflowStatus.FAILED, error=f"{type(e).__name__}: {e}")
            raise
        else:
            self._finish(WorkflowStatus.COMPLETED, result=result)

        return self._build_result(time.monotonic() - started)

    def cancel(self) -> None:
        """Request cooperative cancellation of the running workflow."""
        if self._state.status == WorkflowStatus.RUNNING:
            logger.info(f"Cancellation requested for workflow {self._state.workflow_id}")
            self._cancel_requested = True

    def get_state(self) -> WorkflowState:
        """Return a read-only snapshot of the current state."""
        return self._state.model_copy(deep=True)

    def reset(self) -> None:
        """Discard history and return to ``pending``."""
        if self._state.status == WorkflowStatus.RUNNING:
            raise WorkflowStateError("Cannot reset a running workflow; cancel it first")
        for task in list(self._background):
            task.cancel()
        self._background.clear()
        self._init_run()

    @property
    def cancelled(self) -> bool:
        signal = self._options.abort_signal if self._options else None
        return self._cancel_requested or (signal is not None and signal.is_set())

    # ------------------------------------------------------------------
    # Topology hooks

    @abc.abstractmethod
    async def _run(self, input: str) -> str:
        """Drive the topology and return the final text."""
        raise NotImplementedError

    def _planned_steps(self) -> int:
        return len(self.config.agents)

    def _reset_topology(self) -> None:
        """Clear topology-specific bookkeeping (override as needed)."""

    # ------------------------------------------------------------------
    # Run bookkeeping

    def _init_run(self) -> None:
        self._state = WorkflowState(
            type=self.config.type, total_steps=self._planned_steps()
        )
        self._options: Optional[ExecutionOptions] = None
        self._cancel_requested = False
        self._deadline: Optional[float] = None
        self._step_counter = 0
        self._closed = False
        self._reset_topology()

    def _transition(self, status: WorkflowStatus) -> None:
        current = self._state.status
        if status not in _TRANSITIONS.get(current, set()):
            raise WorkflowStateError(
                f"Cannot move workflow {self._state.workflow_id} from "
                f"{current.value} to {status.value}; call reset() first"
            )
        self._state.status = status

    def _finish(
        self,
        status: WorkflowStatus,
        result: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        self._transition(status)
        self._state.completed_at = _utcnow()
        if status == WorkflowStatus.COMPLETED:
            self._state.result = result
            logger.info(f"Workflow {self._state.workflow_id} completed")
            self._emit(
                ProgressEvent(
                    type="workflow-complete",
                    workflow_id=self._state.workflow_id,
                    result=result,
                    state=self.get_state(),
                )
            )
        else:
            self._state.error = error
            logger.info(
                f"Workflow {self._state.workflow_id} ended with status={status.value}: {error}"
            )
            self._emit(
                ProgressEvent(
                    type="workflow-error",
                    workflow_id=self._state.workflow_id,
                    error=error,
                    state=self.get_state(),
                )
            )
        self._closed = True

    def _build_result(self, elapsed: float) -> WorkflowExecutionResult:
        state = self.get_state()
        usage = sum((s.tokens_used for s in state.steps if s.tokens_used), TokenUsage())
        return WorkflowExecutionResult(
            status=state.status,
            result=state.result,
            error=state.error,
            steps=list(state.steps),
            execution_time=elapsed,
            total_tokens=usage,
            state=state,
        )

    def _set_metadata(self, **values: Any) -> None:
        if not self._closed:
            self._state.metadata.update(values)

    def _debug(self, message: str) -> None:
        logger.log(logging.INFO if self.config.debug else logging.DEBUG, message)

    def _track(self, future: asyncio.Future) -> asyncio.Future:
        self._background.add(future)
        future.add_done_callback(self._on_background_done)
        return future

    def _on_background_done(self, future: asyncio.Future) -> None:
        self._background.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.warning(f"Background task failed: {future.exception()}")

    # ------------------------------------------------------------------
    # Cancellation and deadlines

    def _check_cancelled(self) -> None:
        if self.cancelled:
            raise WorkflowCancelledError()

    def _check_deadline(self) -> None:
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise BudgetExceededError("workflow")

    def _checkpoint(self) -> None:
        """Called between steps: no new step starts after cancel or timeout."""
        self._check_cancelled()
        self._check_deadline()

    def _remaining(self, step_deadline: Optional[float]) -> Tuple[Optional[float], str]:
        now = time.monotonic()
        budgets = []
        if self._deadline is not None:
            budgets.append((self._deadline - now, "workflow"))
        if step_deadline is not None:
            budgets.append((step_deadline - now, "step"))
        if not budgets:
            return None, ""
        return min(budgets)

    # ------------------------------------------------------------------
    # Progress and conversation log

    def _emit(self, event: ProgressEvent) -> None:
        if self._closed or self._options is None:
            return
        callback = self._options.on_progress
        if callback is None:
            return
        try:
            outcome = callback(event)
        except Exception:
            logger.exception(f"Progress callback failed for {event.type} event")
            return
        if inspect.isawaitable(outcome):
            self._track(asyncio.ensure_future(outcome))

    async def _record_message(
        self, role: str, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        if self._store is None or self._options is None or self._closed:
            return
        conversation_id = self._options.conversation_id
        message = ConversationMessage(
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata={"workflow_id": self._state.workflow_id, **(metadata or {})},
        )
        try:
            await self._store.append_message(conversation_id, message)
        except Exception as e:
            logger.warning(
                f"Failed to append message to conversation {conversation_id}: {e}"
            )

    # ------------------------------------------------------------------
    # Step execution

    async def _run_step(self, agent: AgentDefinition, input: str) -> WorkflowStep:
        """Invoke ``agent`` with retries and record the resulting step."""
        step, _ = await self._execute_step(agent, input)
        return step

    async def _run_parsed_step(
        self,
        agent: AgentDefinition,
        input: str,
        parse: Callable[[str], ParsedT],
    ) -> Tuple[WorkflowStep, ParsedT]:
        """Like :meth:`_run_step`, with ``parse`` applied inside each attempt.

        Parse failures are classified as ``parse_error`` and retried only when
        the retry policy lists that kind.
        """
        return await self._execute_step(agent, input, parse)

    async def _execute_step(
        self,
        agent: AgentDefinition,
        input: str,
        parse: Optional[Callable[[str], Any]] = None,
    ) -> Tuple[WorkflowStep, Any]:
        self._checkpoint()
        self._step_counter += 1
        step_id = f"step_{self._step_counter}"
        started_at = _utcnow()
        began = time.monotonic()
        step_deadline = began + self.step_timeout if self.step_timeout else None
        policy = self.retry_policy
        attempt_errors: List[str] = []

        def settle(
            attempts: int,
            result: Optional[InvocationResult] = None,
            error: Optional[str] = None,
            kind: Optional[ErrorKind] = None,
        ) -> WorkflowStep:
            return WorkflowStep(
                id=step_id,
                agent_id=agent.id,
                agent_name=agent.name,
                input=input,
                output=result.text if result else None,
                error=error,
                error_kind=kind,
                attempts=attempts,
                attempt_errors=list(attempt_errors),
                started_at=started_at,
                completed_at=_utcnow(),
                duration=time.monotonic() - began,
                finish_reason=result.finish_reason if result else None,
                tokens_used=result.usage if result else None,
            )

        self._debug(f"Running agent {agent.name} as {step_id}")
        self._emit(
            ProgressEvent(
                type="step-start",
                workflow_id=self._state.workflow_id,
                step_id=step_id,
                agent_id=agent.id,
            )
        )

        attempt = 0
        while True:
            attempt += 1
            try:
                result, parsed = await self._attempt(agent, input, step_id, step_deadline, parse)
            except BudgetExceededError as e:
                self._fail_step(settle(attempt, error=str(e), kind=ErrorKind.TIMEOUT_BUDGET))
                raise
            except Exception as e:
                kind = classify_error(e)
                message = str(e) or type(e).__name__
                if not policy.is_retryable(kind) or attempt > policy.max_retries:
                    step = settle(attempt, error=message, kind=kind)
                    self._fail_step(step)
                    raise StepFailedError(step, kind) from e

                attempt_errors.append(message)
                logger.warning(
                    f"Retrying agent {agent.name} after {kind.value} "
                    f"(attempt {attempt + 1}/{policy.max_retries + 1}): {message}"
                )
                if not self.cancelled:
                    remaining, scope = self._remaining(step_deadline)
                    await schedule_retry(policy, attempt, remaining)
                if self.cancelled:
                    self._fail_step(settle(attempt, error=message, kind=kind))
                    raise WorkflowCancelledError()
                remaining, scope = self._remaining(step_deadline)
                if remaining is not None and remaining <= 0:
                    budget = BudgetExceededError(scope)
                    self._fail_step(
                        settle(attempt, error=str(budget), kind=ErrorKind.TIMEOUT_BUDGET)
                    )
                    raise budget from e
                continue

            step = settle(attempt, result=result)
            self._complete_step(step)
            await self._record_message(
                "assistant",
                step.output or "",
                {"agent_id": agent.id, "agent_name": agent.name, "step_id": step_id},
            )
            return step, parsed

    async def _attempt(
        self,
        agent: AgentDefinition,
        input: str,
        step_id: str,
        step_deadline: Optional[float],
        parse: Optional[Callable[[str], Any]],
    ) -> Tuple[InvocationResult, Any]:
        remaining, scope = self._remaining(step_deadline)
        if remaining is not None and remaining <= 0:
            raise BudgetExceededError(scope)

        call = self._invoke(agent, input, step_id)
        if remaining is None:
            result = await call
        else:
            try:
                result = await asyncio.wait_for(call, timeout=remaining)
            except asyncio.TimeoutError:
                raise BudgetExceededError(
                    scope,
                    f"{scope.capitalize()} timeout exceeded while running agent {agent.name}",
                ) from None

        parsed = parse(result.text) if parse is not None else None
        return result, parsed

    async def _invoke(
        self, agent: AgentDefinition, input: str, step_id: str
    ) -> InvocationResult:
        context = dict(self._options.context) if self._options else {}
        if self._options is not None and self._options.on_progress is not None:

            def forward(delta: str) -> None:
                self._emit(
                    ProgressEvent(
                        type="step-progress",
                        workflow_id=self._state.workflow_id,
                        step_id=step_id,
                        agent_id=agent.id,
                        delta=delta,
                    )
                )

            return await self._invoker.invoke_streaming(agent, input, forward, context)
        return await self._invoker.invoke(agent, input, context)

    def _complete_step(self, step: WorkflowStep) -> None:
        if self._closed:
            logger.debug(f"Discarding late result of {step.id} from agent {step.agent_id}")
            return
        self._state.steps.append(step)
        self._state.current_step_index = len(self._state.steps)
        self._emit(
            ProgressEvent(
                type="step-complete",
                workflow_id=self._state.workflow_id,
                step_id=step.id,
                agent_id=step.agent_id,
                step=step,
            )
        )

    def _fail_step(self, step: WorkflowStep) -> None:
        if self._closed:
            return
        self._state.steps.append(step)
        self._state.current_step_index = len(self._state.steps)
        logger.warning(f"Agent {step.agent_name} failed in {step.id}: {step.error}")
        self._emit(
            ProgressEvent(
                type="step-error",
                workflow_id=self._state.workflow_id,
                step_id=step.id,
                agent_id=step.agent_id,
                step=step,
                error=step.error,
            )
        )
