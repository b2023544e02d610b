"""Routing topology: classify the request, then hand it to one specialist."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..constants import FALLBACK_ROUTE_ID
from ..contracts import Classification, RouteDefinition, RoutingWorkflowConfig
from ..errors import OutputParseError, WorkflowError
from .base import WorkflowExecutor
from .parsing import KeywordClassificationParser, OutputParser

logger = logging.getLogger(__name__)


class RoutingExecutor(WorkflowExecutor[RoutingWorkflowConfig]):
    """Run the router agent, pick a route and run exactly one downstream agent.

    The router's answer is read by ``classification_parser`` (keyword/JSON
    matching by default). Among matched routes whose ``condition`` holds, the
    highest ``priority`` wins; ties go to the route declared first. When no
    route matches, the fallback agent runs instead.
    """

    config_type = RoutingWorkflowConfig

    def _planned_steps(self) -> int:
        return 2

    def _reset_topology(self) -> None:
        self._classification: Optional[Classification] = None
        self._selected: List[RouteDefinition] = []

    @property
    def parser(self) -> OutputParser[Classification]:
        return self.config.classification_parser or KeywordClassificationParser(
            self.config.routes
        )

    def _classify(self, raw: str) -> Classification:
        try:
            return self.parser.parse(raw)
        except OutputParseError as e:
            logger.warning(
                f"Could not parse router output in workflow {self._state.workflow_id}: {e}"
            )
            return Classification(raw=raw)

    def _select(self, input: str, classification: Classification) -> Optional[RouteDefinition]:
        if self.config.select_route is not None:
            return self.config.select_route(input, classification.raw, list(self.config.routes))

        by_id = {route.id.lower(): route for route in self.config.routes}
        candidates = []
        for route_id in classification.route_ids:
            route = by_id.get(route_id.lower())
            if route is None or route in candidates:
                continue
            if route.condition is not None and not route.condition(input, classification):
                continue
            candidates.append(route)
        if not candidates:
            return None
        # stable: the first declared route wins among equal priorities
        order = {route.id: index for index, route in enumerate(self.config.routes)}
        candidates.sort(key=lambda route: (-route.priority, order[route.id]))
        return candidates[0]

    def _fallback_route(self) -> RouteDefinition:
        if self.config.fallback_agent is None:
            raise WorkflowError("No routes matched and no fallback agent configured")
        return RouteDefinition(
            id=FALLBACK_ROUTE_ID,
            name="Fallback",
            description="Default fallback agent",
            agent=self.config.fallback_agent,
        )

    async def _run(self, input: str) -> str:
        self._checkpoint()
        prompt = (
            f"{self.config.classification_prompt}\n\nInput: {input}"
            if self.config.classification_prompt
            else input
        )
        self._debug("[routing] classifying input with router agent")
        router_step = await self._run_step(self.config.router_agent, prompt)

        classification = self._classify(router_step.output or "")
        self._classification = classification
        self._debug(f"[routing] classification: {classification.route_ids}")

        route = self._select(input, classification)
        if route is None:
            logger.info(
                f"No route matched in workflow {self._state.workflow_id}; using fallback agent"
            )
            route = self._fallback_route()
        else:
            logger.info(f"Routing workflow {self._state.workflow_id} to {route.name}")
        self._selected = [route]
        self._set_metadata(
            classification=classification.model_dump(),
            selected_routes=[route.id],
        )

        route_input = input
        if self.config.with_explanation:
            rationale = classification.reasoning or classification.raw.strip()
            if rationale:
                route_input = f"{input}\n\nRouting rationale: {rationale}"

        self._checkpoint()
        step = await self._run_step(route.agent, route_input)
        output = step.output or ""
        if self.config.include_routing_explanation:
            return f"[Routed to: {route.name}]\n\n{output}"
        return output

    def get_classification(self) -> Optional[Classification]:
        return self._classification

    def get_selected_routes(self) -> List[RouteDefinition]:
        return list(self._selected)
