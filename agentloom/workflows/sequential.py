"""Sequential topology: each agent consumes the previous agent's output."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..contracts import SequentialWorkflowConfig, WorkflowStep
from .base import WorkflowExecutor

logger = logging.getLogger(__name__)


class SequentialExecutor(WorkflowExecutor[SequentialWorkflowConfig]):
    """Run agents in a fixed order, piping outputs forward.

    With ``include_previous_context`` every agent after the first sees all
    earlier outputs followed by the original request instead of only the
    immediately preceding output.
    """

    config_type = SequentialWorkflowConfig

    def _reset_topology(self) -> None:
        self._outputs: List[str] = []

    def _next_input(self, original: str) -> str:
        if not self.config.include_previous_context:
            return self._outputs[-1]
        history = "\n\n".join(
            f"Step {index + 1} ({self.config.agents[index].name}): {output}"
            for index, output in enumerate(self._outputs)
        )
        return f"{history}\n\nNow process the following:\n{original}"

    async def _run(self, input: str) -> str:
        agents = self.config.agents
        current_input = input
        output = input

        for index, agent in enumerate(agents):
            self._checkpoint()
            self._debug(
                f"[sequential] agent {index + 1}/{len(agents)}: {agent.name} "
                f"input={current_input[:100]!r}"
            )
            step = await self._run_step(agent, current_input)

            output = step.output or ""
            if self.config.transform_output is not None:
                output = self.config.transform_output(output, index)
            self._outputs.append(output)

            if self.config.should_stop is not None and self.config.should_stop(output, index):
                logger.info(
                    f"Early stop after agent {agent.name} ({index + 1}/{len(agents)}) "
                    f"in workflow {self._state.workflow_id}"
                )
                self._set_metadata(stopped_early=True, stopped_at=index)
                break

            if index < len(agents) - 1:
                current_input = self._next_input(input)

        return output

    def get_step_output(self, step_index: int) -> Optional[str]:
        steps = self._state.steps
        return steps[step_index].output if 0 <= step_index < len(steps) else None

    def get_all_outputs(self) -> List[str]:
        return [step.output for step in self._state.steps if step.output is not None]

    def get_step_by_agent_id(self, agent_id: str) -> Optional[WorkflowStep]:
        return next((s for s in self._state.steps if s.agent_id == agent_id), None)
