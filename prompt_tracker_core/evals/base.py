"""
Evaluator base definitions.

Every evaluator is built once from a typed parameter model and then
scores any number of responses. Evaluators hold no state besides their
parameters and perform no I/O, except the LLM judge which talks to an
injected judge client.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pydantic import BaseModel, ValidationError

from prompt_tracker_core.domain.exceptions import (
    EvaluatorExecutionError,
    InvalidEvaluatorConfigError,
)
from prompt_tracker_core.domain.models import Response
from prompt_tracker_core.runtime.errors import ErrorCode, ServiceError

PASSING_NORMALIZED_SCORE = 0.8


@dataclass
class EvalResult:
    """Result of a single evaluator run, on the evaluator's own scale."""

    score: float
    passed: bool
    feedback: str | None = None
    criteria_scores: dict[str, float] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


class EvaluatorParams(BaseModel):
    """Base for evaluator parameter models. Unknown fields are rejected."""

    model_config = {"extra": "forbid", "frozen": True}


class BaseEvaluator(abc.ABC):
    """Common contract for all evaluators.

    Subclasses declare `params_model` and implement `_evaluate`. The base
    class decodes parameters, checks the reported score against the
    declared scale and wraps unexpected failures.
    """

    key: ClassVar[str]
    name: ClassVar[str]
    description: ClassVar[str] = ""
    category: ClassVar[str] = "automated"
    params_model: ClassVar[type[EvaluatorParams]] = EvaluatorParams

    def __init__(self, params: dict[str, Any] | EvaluatorParams | None = None):
        if isinstance(params, EvaluatorParams):
            params = params.model_dump(by_alias=True)
        try:
            self.params = self.params_model.model_validate(params or {})
        except ValidationError as e:
            raise InvalidEvaluatorConfigError(
                f"Invalid parameters for evaluator '{self.key}': {e.errors(include_url=False)}",
                cause=e,
            ) from e

    @property
    def evaluator_type(self) -> str:
        return type(self).__name__

    @property
    def score_min(self) -> float:
        return 0

    @property
    def score_max(self) -> float:
        return 100

    def normalize(self, score: float) -> float:
        """Map a score onto 0-1 using this evaluator's scale."""
        span = self.score_max - self.score_min
        if span == 0:
            return 0.0
        return min(max((score - self.score_min) / span, 0.0), 1.0)

    def is_passing(self, score: float) -> bool:
        """Default verdict: normalized score of at least 0.8."""
        return self.normalize(score) >= PASSING_NORMALIZED_SCORE

    def evaluate(self, response: Response) -> EvalResult:
        """
        Score a response.

        Args:
            response: The response to evaluate.

        Returns:
            EvalResult on this evaluator's declared scale.

        Raises:
            EvaluatorExecutionError: If scoring fails or the score is off-scale.
        """
        try:
            result = self._evaluate(response.response_text or "", response)
        except ServiceError:
            raise
        except Exception as e:
            raise EvaluatorExecutionError(
                f"{self.evaluator_type} failed: {type(e).__name__}: {e}", cause=e
            ) from e

        if not self.score_min <= result.score <= self.score_max:
            raise EvaluatorExecutionError(
                f"{self.evaluator_type} reported score {result.score} outside "
                f"{self.score_min}..{self.score_max}",
                code=ErrorCode.INVALID_SCORE,
            )

        result.metadata.setdefault("config", self.params.model_dump(by_alias=True))
        return result

    @abc.abstractmethod
    def _evaluate(self, text: str, response: Response) -> EvalResult:
        """Score the response text; `response` gives access to the rendered prompt."""
        ...

    @staticmethod
    def truncate(text: str, length: int = 100) -> str:
        """Shorten text for feedback previews."""
        if len(text) <= length:
            return text
        return text[: length - 3] + "..."
