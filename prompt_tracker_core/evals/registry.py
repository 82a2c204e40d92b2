"""
Evaluator registry.

A closed, explicit map from evaluator key to implementation. Keys are
resolved once when configurations are loaded; an unknown key is a
configuration error, never a runtime lookup failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from prompt_tracker_core.domain.exceptions import UnknownEvaluatorError
from prompt_tracker_core.domain.interfaces import JudgeClient

from .base import BaseEvaluator
from .evaluators import (
    ExactMatchEvaluator,
    FormatEvaluator,
    KeywordEvaluator,
    LengthEvaluator,
    PatternMatchEvaluator,
)
from .llm_judge import LlmJudgeEvaluator


@dataclass(frozen=True)
class EvaluatorInfo:
    """Registry entry describing one evaluator implementation."""

    key: str
    name: str
    description: str
    category: str
    evaluator_class: type[BaseEvaluator]

    @property
    def default_config(self) -> dict[str, Any]:
        return self.evaluator_class.params_model().model_dump(by_alias=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "evaluator_type": self.evaluator_class.__name__,
            "default_config": self.default_config,
        }


def _info(evaluator_class: type[BaseEvaluator]) -> EvaluatorInfo:
    return EvaluatorInfo(
        key=evaluator_class.key,
        name=evaluator_class.name,
        description=evaluator_class.description,
        category=evaluator_class.category,
        evaluator_class=evaluator_class,
    )


EVALUATORS: dict[str, EvaluatorInfo] = {
    info.key: info
    for info in map(
        _info,
        [
            ExactMatchEvaluator,
            PatternMatchEvaluator,
            KeywordEvaluator,
            LengthEvaluator,
            FormatEvaluator,
            LlmJudgeEvaluator,
        ],
    )
}


class EvaluatorRegistry:
    """
    Builds evaluators from registry keys.

    Usage:
        registry = EvaluatorRegistry(judge_client=OpenAIJudgeClient())
        evaluator = registry.build("keyword", {"required_keywords": ["hello"]})
    """

    def __init__(
        self,
        judge_client: JudgeClient | None = None,
        evaluators: dict[str, EvaluatorInfo] | None = None,
    ):
        self.judge_client = judge_client
        self._evaluators = evaluators if evaluators is not None else EVALUATORS

    def list_evaluators(self) -> list[EvaluatorInfo]:
        return sorted(self._evaluators.values(), key=lambda info: info.key)

    def exists(self, key: str) -> bool:
        return key in self._evaluators

    def get(self, key: str) -> EvaluatorInfo:
        """
        Look up registry metadata.

        Raises:
            UnknownEvaluatorError: If the key is not registered.
        """
        try:
            return self._evaluators[key]
        except KeyError:
            known = ", ".join(sorted(self._evaluators))
            raise UnknownEvaluatorError(
                f"Unknown evaluator '{key}'. Known evaluators: {known}"
            ) from None

    def build(self, key: str, params: dict[str, Any] | None = None) -> BaseEvaluator:
        """
        Construct an evaluator with validated parameters.

        Args:
            key: Registry key (e.g. "keyword").
            params: Raw parameter map from the EvaluatorConfig.

        Returns:
            A ready-to-run evaluator.

        Raises:
            UnknownEvaluatorError: If the key is not registered.
            InvalidEvaluatorConfigError: If the parameters are malformed.
        """
        evaluator_class = self.get(key).evaluator_class
        if issubclass(evaluator_class, LlmJudgeEvaluator):
            return evaluator_class(params, judge_client=self.judge_client)
        return evaluator_class(params)
