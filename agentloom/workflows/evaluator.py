"""Evaluator-optimizer topology: generate, score, refine, repeat."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..contracts import EvaluationResult, EvaluatorOptimizerWorkflowConfig, IterationResult
from ..errors import StepFailedError, WorkflowError
from .base import WorkflowExecutor
from .parsing import OutputParser, RegexEvaluationParser

logger = logging.getLogger(__name__)

DEFAULT_EVALUATION_PROMPT = (
    "Evaluate the following output based on the original request.\n\n"
    "Original Request: {request}\n\nOutput:\n{output}"
)
CRITERIA_EVALUATION_PROMPT = (
    "{criteria}\n\nOriginal Request: {request}\n\nOutput to Evaluate:\n{output}"
)
OPTIMIZATION_PROMPT = (
    "Original Request: {request}\n\n"
    "Current Output:\n{output}\n\n"
    "Evaluation Feedback (Score: {score:g}/100):\n{feedback}\n\n"
    "Please refine the output to address the feedback and improve quality."
)


class EvaluatorOptimizerExecutor(WorkflowExecutor[EvaluatorOptimizerWorkflowConfig]):
    """Iteratively refine a generated answer until it scores well enough.

    Each iteration evaluates the current candidate and then stops when the
    score reaches ``quality_threshold``, when ``max_iterations`` is reached,
    or when the score improved by less than ``min_improvement``. Otherwise
    the optimizer rewrites the candidate using the evaluator's feedback.

    With ``fail_policy="best-effort"`` a failing step after at least one
    evaluated iteration still completes the run with the last evaluated
    candidate; ``metadata["degraded"]`` is set in that case.
    """

    config_type = EvaluatorOptimizerWorkflowConfig

    def _planned_steps(self) -> int:
        # generate once, then evaluate every iteration and optimize all but the last
        return 2 * self.config.max_iterations

    def _reset_topology(self) -> None:
        self._iterations: List[IterationResult] = []

    @property
    def parser(self) -> OutputParser[EvaluationResult]:
        return self.config.evaluation_parser or RegexEvaluationParser()

    def _evaluation_prompt(self, request: str, output: str) -> str:
        if self.config.evaluation_criteria:
            return CRITERIA_EVALUATION_PROMPT.format(
                criteria=self.config.evaluation_criteria, request=request, output=output
            )
        return DEFAULT_EVALUATION_PROMPT.format(request=request, output=output)

    def _should_stop(
        self,
        iteration: int,
        evaluation: EvaluationResult,
        previous: Optional[EvaluationResult],
    ) -> bool:
        if self.config.should_stop is not None:
            return bool(self.config.should_stop(iteration, evaluation, previous))
        if evaluation.score >= self.config.quality_threshold:
            return True
        if iteration >= self.config.max_iterations:
            return True
        if previous is not None and self.config.min_improvement is not None:
            improvement = evaluation.score - previous.score
            if improvement < self.config.min_improvement:
                self._debug(
                    f"[evaluator] insufficient improvement: {improvement:g} "
                    f"< {self.config.min_improvement:g}"
                )
                return True
        return False

    async def _evaluate(self, request: str, candidate: str) -> EvaluationResult:
        _, evaluation = await self._run_parsed_step(
            self.config.evaluator_agent,
            self._evaluation_prompt(request, candidate),
            self.parser.parse,
        )
        return evaluation.model_copy(
            update={"acceptable": evaluation.score >= self.config.quality_threshold}
        )

    async def _refine(self, request: str, candidate: str, evaluation: EvaluationResult) -> str:
        prompt = OPTIMIZATION_PROMPT.format(
            request=request,
            output=candidate,
            score=evaluation.score,
            feedback=evaluation.feedback,
        )
        step = await self._run_step(self.config.optimizer_agent, prompt)
        return step.output or ""

    async def _loop(self, input: str) -> None:
        self._checkpoint()
        self._debug("[evaluator] generating initial output")
        step = await self._run_step(self.config.generator_agent, input)
        candidate = step.output or ""
        previous: Optional[EvaluationResult] = None

        for iteration in range(1, self.config.max_iterations + 1):
            self._checkpoint()
            self._debug(f"[evaluator] iteration {iteration}/{self.config.max_iterations}")
            evaluation = await self._evaluate(input, candidate)
            record = IterationResult(iteration=iteration, output=candidate, evaluation=evaluation)
            self._iterations.append(record)
            self._debug(f"[evaluator] score {evaluation.score:g}/100")

            # an override may keep going, but never past max_iterations
            if self._should_stop(iteration, evaluation, previous):
                break
            if iteration >= self.config.max_iterations:
                break

            self._checkpoint()
            candidate = await self._refine(input, candidate, evaluation)
            record.optimized_output = candidate
            previous = evaluation

    async def _run(self, input: str) -> str:
        try:
            await self._loop(input)
        except (StepFailedError, WorkflowError) as e:
            if self.config.fail_policy != "best-effort" or not self._iterations:
                raise
            logger.warning(
                f"Workflow {self._state.workflow_id} degraded after "
                f"{len(self._iterations)} iteration(s): {e}"
            )
            self._set_metadata(degraded=True, error=str(e))

        final = self._iterations[-1]
        self._set_metadata(
            iterations=len(self._iterations),
            final_score=final.evaluation.score,
            quality_threshold_met=final.evaluation.acceptable,
        )
        logger.info(
            f"Workflow {self._state.workflow_id} finished refinement at "
            f"score {final.evaluation.score:g}/100 after {len(self._iterations)} iteration(s)"
        )
        if self.config.return_all_iterations:
            return self._format_iterations()
        return final.output

    def _format_iterations(self) -> str:
        sections = [
            f"## Iteration {record.iteration}\n\n"
            f"**Score:** {record.evaluation.score:g}/100\n\n"
            f"**Feedback:** {record.evaluation.feedback}\n\n"
            f"**Output:**\n{record.output}"
            for record in self._iterations
        ]
        final = self._iterations[-1]
        return (
            "\n\n---\n\n".join(sections)
            + f"\n\n## Final Result (Score: {final.evaluation.score:g}/100)\n\n"
            + final.output
        )

    def get_iterations(self) -> List[IterationResult]:
        return list(self._iterations)

    def get_final_iteration(self) -> Optional[IterationResult]:
        return self._iterations[-1] if self._iterations else None

    def get_score_progression(self) -> List[float]:
        return [record.evaluation.score for record in self._iterations]
