"""Parallel topology: fan out to every agent, then aggregate."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional

from ..contracts import ParallelWorkflowConfig, WorkflowStep
from ..errors import BudgetExceededError, WorkflowCancelledError, WorkflowError
from .base import WorkflowExecutor

logger = logging.getLogger(__name__)

SYNTHESIS_PROMPT = "Please synthesize the following outputs:\n\n{aggregated}"


class ParallelExecutor(WorkflowExecutor[ParallelWorkflowConfig]):
    """Run every agent on the same input concurrently and combine the outputs.

    The executor stops waiting when all branches settle, when ``max_wait``
    elapses, when the quorum can no longer be reached, or early once the
    quorum succeeded (always for ``first``, otherwise only with
    ``proceed_on_quorum``). A quorum missed because a branch ran out of time
    ends the run as ``timeout``. Branches still running at that point are left to
    finish in the background unless ``cancel_pending`` is set; their late
    results are discarded.
    """

    config_type = ParallelWorkflowConfig

    def _planned_steps(self) -> int:
        return len(self.config.agents) + (1 if self.config.synthesizer_agent else 0)

    def _reset_topology(self) -> None:
        self._branch_steps: Dict[int, WorkflowStep] = {}
        self._completion_order: List[int] = []
        self._synthesized: Optional[str] = None

    def _can_stop_early(self) -> bool:
        successes = len(self._branch_steps)
        if self.config.aggregation == "first" or self.config.proceed_on_quorum:
            return successes >= self.config.quorum
        return False

    async def _run(self, input: str) -> str:
        self._checkpoint()
        agents = self.config.agents
        quorum = self.config.quorum
        tolerated = len(agents) - quorum

        tasks: Dict[asyncio.Future, int] = {
            asyncio.ensure_future(self._run_step(agent, input)): index
            for index, agent in enumerate(agents)
        }
        self._debug(f"[parallel] started {len(tasks)} branches, quorum={quorum}")

        errors: List[BaseException] = []
        pending = set(tasks)
        wait_deadline = (
            time.monotonic() + self.config.max_wait if self.config.max_wait else None
        )
        max_wait_hit = False
        try:
            while pending:
                timeout = None
                if wait_deadline is not None:
                    timeout = wait_deadline - time.monotonic()
                    if timeout <= 0:
                        max_wait_hit = True
                        break
                done, pending = await asyncio.wait(
                    pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
                if not done:
                    max_wait_hit = True
                    break
                for task in sorted(done, key=tasks.__getitem__):
                    error = task.exception()
                    if error is None:
                        self._branch_steps[tasks[task]] = task.result()
                        self._completion_order.append(tasks[task])
                    else:
                        errors.append(error)
                if self._can_stop_early() or len(errors) > tolerated:
                    break
        except asyncio.CancelledError:
            for task in pending:
                task.cancel()
            raise

        leftovers = [task for task in tasks if not task.done()]
        for task in leftovers:
            if self.config.cancel_pending:
                task.cancel()
            else:
                self._track(task)
        if leftovers:
            self._debug(
                f"[parallel] {len(leftovers)} branch(es) still running; "
                f"{'cancelled' if self.config.cancel_pending else 'left in background'}"
            )

        for error in errors:
            if isinstance(error, BudgetExceededError) and error.scope == "workflow":
                raise error
        if self.cancelled:
            raise WorkflowCancelledError()

        successes = len(self._branch_steps)
        self._set_metadata(
            aggregation=self.config.aggregation,
            successful_agents=successes,
            failed_agents=len(errors),
            pending_agents=len(leftovers),
        )

        if successes < quorum:
            budget = [e for e in errors if isinstance(e, BudgetExceededError)]
            if budget:
                raise budget[0]
            if errors or not max_wait_hit:
                raise WorkflowError(
                    f"Insufficient successful agents ({successes}/{quorum} required)"
                    + (f": {errors[0]}" if errors else "")
                )
            raise BudgetExceededError(
                "max_wait",
                f"Max wait of {self.config.max_wait}s exceeded with "
                f"{successes}/{quorum} successful agents",
            )
        if max_wait_hit:
            logger.info(
                f"Max wait exceeded in workflow {self._state.workflow_id}; "
                f"using {successes} partial result(s)"
            )

        aggregated = self._aggregate()

        synthesizer = self.config.synthesizer_agent
        if synthesizer is None:
            return aggregated

        self._checkpoint()
        self._debug("[parallel] running synthesizer agent")
        step = await self._run_step(synthesizer, SYNTHESIS_PROMPT.format(aggregated=aggregated))
        self._synthesized = step.output or ""
        return self._synthesized

    # ------------------------------------------------------------------
    # Aggregation

    def _aggregate(self) -> str:
        strategy = self.config.aggregation
        if strategy == "first":
            return self._branch_steps[self._completion_order[0]].output or ""

        steps = [self._branch_steps[index] for index in sorted(self._branch_steps)]
        outputs = [step.output or "" for step in steps]

        if strategy == "custom":
            return self.config.aggregate_results(outputs, steps)
        if strategy == "vote":
            return self._vote(outputs)
        return self._concatenate(outputs, steps)

    def _concatenate(self, outputs: List[str], steps: List[WorkflowStep]) -> str:
        if self.config.include_agent_headers:
            segments = [
                f"## {step.agent_name}\n\n{output}" for output, step in zip(outputs, steps)
            ]
        else:
            segments = outputs
        return self.config.separator.join(segments)

    @staticmethod
    def _vote(outputs: List[str]) -> str:
        groups: Dict[str, List[int]] = {}
        for position, output in enumerate(outputs):
            groups.setdefault(output.strip().lower(), []).append(position)
        # max() keeps the earliest group on ties, i.e. declaration order
        winner = max(groups.values(), key=len)
        return outputs[winner[0]].strip()

    # ------------------------------------------------------------------
    # Accessors

    def get_parallel_outputs(self) -> List[Dict[str, str]]:
        """Successful branch outputs in agent declaration order."""
        return [
            {"agent_name": step.agent_name, "output": step.output or ""}
            for _, step in sorted(self._branch_steps.items())
        ]

    def get_synthesized_output(self) -> Optional[str]:
        return self._synthesized
