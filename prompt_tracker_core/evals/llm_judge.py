"""
LLM-as-judge evaluator.

Sends the rendered prompt and the response to a judge model and asks for
an overall score, per-criterion scores and feedback, constrained by a
JSON schema built from the configured criteria.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, model_validator

from prompt_tracker_core.config import settings
from prompt_tracker_core.domain.exceptions import ConfigurationError, JudgeError
from prompt_tracker_core.domain.interfaces import JudgeClient
from prompt_tracker_core.domain.models import Response
from prompt_tracker_core.runtime.errors import ErrorCode

from .base import BaseEvaluator, EvalResult, EvaluatorParams

CRITERIA_DESCRIPTIONS = {
    "accuracy": "Is the response factually correct and accurate?",
    "helpfulness": "Is the response helpful and addresses the user's needs?",
    "tone": "Is the tone appropriate and professional?",
    "clarity": "Is the response clear and easy to understand?",
    "completeness": "Does the response fully address the question?",
    "conciseness": "Is the response concise without unnecessary information?",
}

JUDGE_PROMPT_TEMPLATE = """You are an expert evaluator of AI-generated responses. Please evaluate the following LLM response.

ORIGINAL PROMPT:
{rendered_prompt}

LLM RESPONSE TO EVALUATE:
{response_text}

EVALUATION CRITERIA:
{criteria_list}
{custom_section}

Please provide your evaluation with:
- overall_score: A number from {score_min} to {score_max}
- criteria_scores: A score for each criterion ({criteria_names})
- feedback: Detailed explanation of your scores

Your response will be automatically structured as JSON.
"""


def build_judge_schema(criteria: list[str], score_min: float, score_max: float) -> dict[str, Any]:
    """
    Build the JSON schema the judge answer must follow.

    Args:
        criteria: Criterion names; each becomes a required numeric property.
        score_min: Lower bound advertised to the judge.
        score_max: Upper bound advertised to the judge.

    Returns:
        dict: A strict JSON schema object.
    """
    criteria_properties = {
        criterion: {
            "type": "number",
            "description": f"Score for {criterion} ({score_min}-{score_max})",
        }
        for criterion in criteria
    }
    return {
        "type": "object",
        "properties": {
            "overall_score": {
                "type": "number",
                "description": f"Overall score from {score_min} to {score_max}",
            },
            "criteria_scores": {
                "type": "object",
                "properties": criteria_properties,
                "required": list(criteria),
                "additionalProperties": False,
            },
            "feedback": {
                "type": "string",
                "description": "Detailed feedback explaining the scores and evaluation",
            },
        },
        "required": ["overall_score", "criteria_scores", "feedback"],
        "additionalProperties": False,
    }


class LlmJudgeParams(EvaluatorParams):
    judge_model: str = Field(default_factory=lambda: settings.JUDGE_MODEL)
    criteria: list[str] = Field(
        default_factory=lambda: ["accuracy", "helpfulness", "tone"], min_length=1
    )
    score_min: float = 0
    score_max: float = 5
    custom_instructions: str | None = None

    @model_validator(mode="after")
    def _check_scale(self):
        if self.score_max <= self.score_min:
            raise ValueError(
                f"score_max ({self.score_max}) must be greater than score_min ({self.score_min})"
            )
        return self


class LlmJudgeEvaluator(BaseEvaluator):
    """Scores a response by asking a judge model; passes at 80% of the scale."""

    key = "llm_judge"
    name = "LLM Judge"
    description = "Uses an LLM to evaluate response quality"
    category = "llm_judge"
    params_model = LlmJudgeParams

    def __init__(self, params=None, judge_client: JudgeClient | None = None):
        super().__init__(params)
        if judge_client is None:
            raise ConfigurationError("llm_judge evaluator has no judge client configured")
        self.judge_client = judge_client

    @property
    def score_min(self) -> float:
        return self.params.score_min

    @property
    def score_max(self) -> float:
        return self.params.score_max

    def build_judge_prompt(self, response: Response) -> str:
        criteria_list = "\n".join(
            f"- {criterion.capitalize()}: "
            f"{CRITERIA_DESCRIPTIONS.get(criterion, f'Evaluate {criterion}')}"
            for criterion in self.params.criteria
        )
        custom_section = ""
        if self.params.custom_instructions:
            custom_section = f"\nAdditional Instructions:\n{self.params.custom_instructions}\n"

        return JUDGE_PROMPT_TEMPLATE.format(
            rendered_prompt=response.rendered_prompt,
            response_text=response.response_text or "",
            criteria_list=criteria_list,
            custom_section=custom_section,
            score_min=self._fmt(self.score_min),
            score_max=self._fmt(self.score_max),
            criteria_names=", ".join(self.params.criteria),
        )

    def _evaluate(self, text: str, response: Response) -> EvalResult:
        judge_prompt = self.build_judge_prompt(response)
        schema = build_judge_schema(self.params.criteria, self.score_min, self.score_max)
        answer = self.judge_client.judge(
            judge_prompt,
            model=self.params.judge_model,
            schema=schema,
            timeout=settings.JUDGE_TIMEOUT_SECONDS,
        )

        score = self._read_score(answer.get("overall_score"), "overall_score")
        criteria_scores = {
            str(name): self._read_score(value, f"criteria_scores.{name}")
            for name, value in (answer.get("criteria_scores") or {}).items()
        }

        return EvalResult(
            score=score,
            passed=self.is_passing(score),
            feedback=answer.get("feedback"),
            criteria_scores=criteria_scores,
            metadata={
                "judge_model": self.params.judge_model,
                "criteria": list(self.params.criteria),
                "criteria_scores": criteria_scores,
                "judge_prompt": judge_prompt,
            },
        )

    def _read_score(self, value: Any, field_name: str) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise JudgeError(
                f"Judge returned non-numeric {field_name}: {value!r}",
                code=ErrorCode.JUDGE_INVALID_OUTPUT,
            )
        if not self.score_min <= value <= self.score_max:
            raise JudgeError(
                f"Judge returned {field_name}={value} outside "
                f"{self._fmt(self.score_min)}..{self._fmt(self.score_max)}",
                code=ErrorCode.JUDGE_INVALID_OUTPUT,
            )
        return float(value)

    @staticmethod
    def _fmt(value: float) -> str:
        return str(int(value)) if float(value).is_integer() else str(value)
