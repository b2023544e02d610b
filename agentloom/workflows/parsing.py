"""Parsers that turn free-text agent output into structured results.

Every parser exposes ``parse(text)`` and raises
:class:`~agentloom.errors.OutputParseError` when the text cannot be read.
The regex/keyword defaults are forgiving; callers that need guaranteed
structure should instruct the agent to answer in JSON and use the
schema-validated parsers.
"""

from __future__ import annotations

import json
import re
from typing import Any, Generic, List, Optional, Protocol, Sequence, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from ..contracts import Classification, EvaluationResult, RouteDefinition
from ..errors import OutputParseError

T_co = TypeVar("T_co", covariant=True)
ModelT = TypeVar("ModelT", bound=BaseModel)


class OutputParser(Protocol[T_co]):
    """Capability interface for reading agent output."""

    def parse(self, text: str) -> T_co:
        ...


_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.S)


def extract_json_object(text: str) -> Optional[str]:
    """Return the outermost ``{...}`` block in ``text`` (fences stripped)."""
    stripped = text.strip()
    fenced = _FENCE_RE.match(stripped)
    if fenced:
        stripped = fenced.group(1)
    start, end = stripped.find("{"), stripped.rfind("}")
    if start == -1 or end <= start:
        return None
    return stripped[start : end + 1]


class PydanticOutputParser(Generic[ModelT]):
    """Validate a JSON answer against a pydantic model."""

    def __init__(self, model: Type[ModelT]) -> None:
        self.model = model

    def parse(self, text: str) -> ModelT:
        blob = extract_json_object(text)
        if blob is None:
            raise OutputParseError(f"Expected a JSON object for {self.model.__name__}", raw=text)
        try:
            return self.model.model_validate_json(blob)
        except ValidationError as e:
            raise OutputParseError(
                f"Invalid {self.model.__name__}: {e.error_count()} validation error(s)",
                raw=text,
            ) from e


# ---------------------------------------------------------------------------
# Evaluation


def _split_items(block: str) -> List[str]:
    items = []
    for line in block.splitlines():
        line = line.strip().lstrip("-*•").strip()
        if line:
            items.append(line)
    return items


class RegexEvaluationParser:
    """Read ``SCORE:`` / ``FEEDBACK:`` style evaluator output.

    Falls back to an ``NN/100`` rating when no ``SCORE:`` marker is present.
    ``ISSUES:`` and ``SUGGESTIONS:`` sections are optional.
    """

    score_re = re.compile(r"score\s*:\s*(\d+(?:\.\d+)?)", re.I)
    rating_re = re.compile(r"(\d+(?:\.\d+)?)\s*/\s*100")
    feedback_re = re.compile(
        r"feedback\s*:\s*(.+?)(?=\n\s*(?:issues|suggestions)\s*:|\Z)", re.I | re.S
    )
    issues_re = re.compile(r"issues\s*:\s*(.+?)(?=\n\n|\n\s*suggestions\s*:|\Z)", re.I | re.S)
    suggestions_re = re.compile(r"suggestions\s*:\s*(.+?)(?=\n\n|\Z)", re.I | re.S)

    def parse(self, text: str) -> EvaluationResult:
        match = self.score_re.search(text) or self.rating_re.search(text)
        if match is None:
            raise OutputParseError("Evaluator output did not contain a score", raw=text)
        score = min(max(float(match.group(1)), 0.0), 100.0)

        feedback_match = self.feedback_re.search(text)
        feedback = feedback_match.group(1).strip() if feedback_match else text.strip()
        issues = self.issues_re.search(text)
        suggestions = self.suggestions_re.search(text)

        return EvaluationResult(
            score=score,
            feedback=feedback,
            issues=_split_items(issues.group(1)) if issues else [],
            suggestions=_split_items(suggestions.group(1)) if suggestions else [],
            raw=text,
        )


class EvaluationPayload(BaseModel):
    """JSON shape expected by :class:`SchemaEvaluationParser`."""

    score: float = Field(ge=0, le=100)
    feedback: str = ""
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class SchemaEvaluationParser:
    """Strict JSON evaluation parser."""

    def __init__(self) -> None:
        self._parser = PydanticOutputParser(EvaluationPayload)

    def parse(self, text: str) -> EvaluationResult:
        payload = self._parser.parse(text)
        return EvaluationResult(**payload.model_dump(), raw=text)


# ---------------------------------------------------------------------------
# Classification


def _try_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class KeywordClassificationParser:
    """Read router output as JSON if possible, else by keyword matching.

    JSON answers may use ``{"route": ...}``, ``{"category": ...}`` or
    ``{"routes": [...]}`` plus optional ``reasoning`` and ``confidence``.
    Plain text matches a route when it contains the route id or one of its
    triggers, case-insensitively. Matched ids keep route declaration order.
    """

    def __init__(self, routes: Sequence[RouteDefinition]) -> None:
        self.routes = list(routes)

    def _canonical(self, value: Any) -> Optional[str]:
        wanted = str(value).strip().lower()
        for route in self.routes:
            if route.id.lower() == wanted:
                return route.id
        return None

    def parse(self, text: str) -> Classification:
        trimmed = text.strip()
        data = _try_json(trimmed)
        if isinstance(data, dict):
            if isinstance(data.get("routes"), list):
                candidates = data["routes"]
            else:
                candidates = [data.get("route") or data.get("category")]
            route_ids = []
            for candidate in candidates:
                route_id = self._canonical(candidate) if candidate is not None else None
                if route_id and route_id not in route_ids:
                    route_ids.append(route_id)
            reasoning = data.get("reasoning")
            return Classification(
                route_ids=route_ids,
                reasoning=str(reasoning) if reasoning is not None else None,
                confidence=_as_float(data.get("confidence")),
                raw=text,
            )

        lowered = trimmed.lower()
        route_ids = [
            route.id
            for route in self.routes
            if route.id.lower() in lowered
            or any(trigger.lower() in lowered for trigger in route.triggers)
        ]
        return Classification(route_ids=route_ids, raw=text)


class ClassificationPayload(BaseModel):
    route: str
    reasoning: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class SchemaClassificationParser:
    """Strict JSON router parser: ``{"route": ..., "reasoning": ...}``."""

    def __init__(self) -> None:
        self._parser = PydanticOutputParser(ClassificationPayload)

    def parse(self, text: str) -> Classification:
        payload = self._parser.parse(text)
        return Classification(
            route_ids=[payload.route],
            reasoning=payload.reasoning,
            confidence=payload.confidence,
            raw=text,
        )
