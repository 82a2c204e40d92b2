"""
Built-in heuristic evaluators.

Implements:
- Exact match against expected text
- Regex / literal pattern match
- Required and forbidden keywords
- Length bounds
- Output format (JSON, markdown, plain text)
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any

from pydantic import Field, field_validator, model_validator

from prompt_tracker_core.domain.exceptions import InvalidEvaluatorConfigError
from prompt_tracker_core.domain.models import Response

from .base import BaseEvaluator, EvalResult, EvaluatorParams

PASS_SCORE = 100
FAIL_SCORE = 0


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (scores are never negative)."""
    return int(value + 0.5)


class ExactMatchParams(EvaluatorParams):
    expected_text: str = ""
    case_sensitive: bool = False
    trim_whitespace: bool = True


class ExactMatchEvaluator(BaseEvaluator):
    """Passes only when the response equals the expected text after normalization."""

    key = "exact_match"
    name = "Exact Match"
    description = "Checks if response exactly matches expected text"
    category = "binary"
    params_model = ExactMatchParams

    def _normalize_text(self, text: str) -> str:
        if self.params.trim_whitespace:
            text = text.strip()
        if not self.params.case_sensitive:
            text = text.lower()
        return text

    def _evaluate(self, text: str, response: Response) -> EvalResult:
        expected = self._normalize_text(self.params.expected_text)
        actual = self._normalize_text(text)
        matched = expected == actual

        if matched:
            feedback = "Response exactly matches expected output"
        else:
            feedback = (
                "Response does not match expected output.\n\n"
                f'Expected: "{self.truncate(expected)}"\n\n'
                f'Actual: "{self.truncate(actual)}"'
            )

        return EvalResult(
            score=PASS_SCORE if matched else FAIL_SCORE,
            passed=matched,
            feedback=feedback,
        )


class PatternMatchParams(EvaluatorParams):
    patterns: list[str] = Field(default_factory=list)
    match_all: bool = True


class PatternMatchEvaluator(BaseEvaluator):
    """
    Checks the response against a list of patterns.

    A pattern written as "/body/flags" is a regular expression whose ^ and $
    anchor at line boundaries; supported flags are i (ignore case), m (dot
    matches newline) and x (verbose).
    Anything else is matched literally.
    """

    key = "pattern_match"
    name = "Pattern Match"
    description = "Checks if response matches regex patterns"
    category = "binary"
    params_model = PatternMatchParams

    REGEX_LITERAL = re.compile(r"\A/(.*)/([imx]*)\Z", re.DOTALL)
    FLAGS = {"i": re.IGNORECASE, "m": re.DOTALL, "x": re.VERBOSE}

    def __init__(self, params=None):
        super().__init__(params)
        # Compile up front so a broken regex fails construction
        self._compiled = [(raw, self._compile(raw)) for raw in self.params.patterns]

    def _compile(self, raw: str) -> re.Pattern:
        literal = self.REGEX_LITERAL.match(raw)
        if not literal:
            return re.compile(re.escape(raw))

        body, flag_chars = literal.groups()
        flags = re.MULTILINE
        for char in flag_chars:
            flags |= self.FLAGS[char]
        try:
            return re.compile(body, flags)
        except re.error as e:
            raise InvalidEvaluatorConfigError(f"Invalid pattern {raw!r}: {e}", cause=e) from e

    def _evaluate(self, text: str, response: Response) -> EvalResult:
        if not self._compiled:
            return EvalResult(score=FAIL_SCORE, passed=False, feedback="No patterns configured")

        matched = [raw for raw, pattern in self._compiled if pattern.search(text)]
        failed = [raw for raw, pattern in self._compiled if not pattern.search(text)]

        if self.params.match_all:
            passed = not failed
        else:
            passed = bool(matched)

        total = len(self._compiled)
        if not failed:
            feedback = f"All {total} pattern{'s' if total > 1 else ''} matched successfully"
        elif self.params.match_all:
            feedback = (
                f"Failed to match {len(failed)} pattern{'s' if len(failed) > 1 else ''}: "
                f"{', '.join(failed)}"
            )
        elif matched:
            feedback = f"Matched {len(matched)} of {total} patterns: {', '.join(matched)}"
        else:
            feedback = f"No patterns matched. Tried: {', '.join(self.params.patterns)}"

        return EvalResult(
            score=PASS_SCORE if passed else FAIL_SCORE,
            passed=passed,
            feedback=feedback,
            metadata={"matched_patterns": matched, "failed_patterns": failed},
        )


class KeywordParams(EvaluatorParams):
    required_keywords: list[str] = Field(default_factory=list)
    forbidden_keywords: list[str] = Field(default_factory=list)
    case_sensitive: bool = False


class KeywordEvaluator(BaseEvaluator):
    """
    Scores required keyword coverage and forbidden keyword avoidance.

    With both lists configured the score is 70% required coverage and 30%
    forbidden avoidance. Passing requires every required keyword and no
    forbidden keyword.
    """

    key = "keyword"
    name = "Keyword Checker"
    description = "Checks for required and forbidden keywords in the response"
    params_model = KeywordParams

    REQUIRED_WEIGHT = 0.7
    FORBIDDEN_WEIGHT = 0.3

    def _contains(self, text: str, keyword: str) -> bool:
        if self.params.case_sensitive:
            return keyword in text
        return keyword.lower() in text.lower()

    def _evaluate(self, text: str, response: Response) -> EvalResult:
        required = self.params.required_keywords
        forbidden = self.params.forbidden_keywords

        missing = [k for k in required if not self._contains(text, k)]
        found_forbidden = [k for k in forbidden if self._contains(text, k)]

        if not required and not forbidden:
            score = PASS_SCORE
        else:
            required_score = 0.0
            if required:
                required_score = (len(required) - len(missing)) / len(required) * 100
            forbidden_penalty = 0.0
            if forbidden:
                forbidden_penalty = len(found_forbidden) / len(forbidden) * 100

            if not required:
                score = round_half_up(100 - forbidden_penalty)
            elif not forbidden:
                score = round_half_up(required_score)
            else:
                score = round_half_up(
                    required_score * self.REQUIRED_WEIGHT
                    + (100 - forbidden_penalty) * self.FORBIDDEN_WEIGHT
                )

        parts = []
        if missing:
            parts.append(f"Missing required keywords: {', '.join(missing)}")
        if found_forbidden:
            parts.append(f"Contains forbidden keywords: {', '.join(found_forbidden)}")

        return EvalResult(
            score=score,
            passed=not missing and not found_forbidden,
            feedback=". ".join(parts) if parts else "All keyword requirements met.",
            metadata={
                "missing_keywords": missing,
                "found_forbidden_keywords": found_forbidden,
            },
        )


class LengthParams(EvaluatorParams):
    min_length: int = Field(default=10, ge=0)
    max_length: int = Field(default=2000, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_length > self.max_length:
            raise ValueError(
                f"min_length ({self.min_length}) must not exceed max_length ({self.max_length})"
            )
        return self


class LengthEvaluator(BaseEvaluator):
    """Passes when the response length (in characters) is within bounds."""

    key = "length"
    name = "Length Validator"
    description = "Validates response length against min/max ranges"
    params_model = LengthParams

    def _evaluate(self, text: str, response: Response) -> EvalResult:
        length = len(text)
        low, high = self.params.min_length, self.params.max_length

        if length < low:
            feedback = f"Response is too short ({length} chars). Minimum: {low} chars."
        elif length > high:
            feedback = f"Response is too long ({length} chars). Maximum: {high} chars."
        else:
            feedback = f"Response length is acceptable ({length} chars). Range: {low}-{high} chars."

        in_range = low <= length <= high
        return EvalResult(
            score=PASS_SCORE if in_range else FAIL_SCORE,
            passed=in_range,
            feedback=feedback,
            metadata={"response_length": length},
        )


class OutputFormat(str, Enum):
    JSON = "json"
    MARKDOWN = "markdown"
    PLAIN_TEXT = "plain_text"


class JsonSchemaSpec(EvaluatorParams):
    """Lightweight JSON shape description used by the format evaluator."""

    required_keys: list[str] = Field(default_factory=list)
    optional_keys: list[str] = Field(default_factory=list)
    types: dict[str, str] = Field(default_factory=dict)
    nested_structure: dict[str, "JsonSchemaSpec"] = Field(default_factory=dict)


JsonSchemaSpec.model_rebuild()


class FormatParams(EvaluatorParams):
    format: OutputFormat = OutputFormat.PLAIN_TEXT
    required_keys: list[str] = Field(default_factory=list)
    require_headers: bool = False
    schema_: JsonSchemaSpec | None = Field(default=None, alias="schema")
    strict: bool = False

    model_config = {"extra": "forbid", "frozen": True, "populate_by_name": True}

    @field_validator("format", mode="before")
    @classmethod
    def _lowercase_format(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class FormatEvaluator(BaseEvaluator):
    """
    Validates that the response is well-formed JSON, markdown or plain text.

    JSON responses can additionally be checked against `required_keys` or a
    `schema` describing required/optional keys, value types and nested
    objects. Passing only requires the format itself to be valid; schema
    findings lower the score.
    """

    key = "format"
    name = "Format Validator"
    description = "Validates response format (JSON, Markdown, plain text)"
    params_model = FormatParams

    MARKDOWN_HEADER = re.compile(r"^#{1,6}\s+.+", re.MULTILINE)
    TYPE_CHECKS = {
        "string": lambda v: isinstance(v, str),
        "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
        "int": lambda v: isinstance(v, int) and not isinstance(v, bool),
        "float": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
        "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
        "boolean": lambda v: isinstance(v, bool),
        "bool": lambda v: isinstance(v, bool),
        "array": lambda v: isinstance(v, list),
        "object": lambda v: isinstance(v, dict),
        "hash": lambda v: isinstance(v, dict),
        "null": lambda v: v is None,
        "nil": lambda v: v is None,
    }

    def _evaluate(self, text: str, response: Response) -> EvalResult:
        fmt = self.params.format
        if fmt == OutputFormat.JSON:
            score, valid, feedback = self._evaluate_json(text)
        elif fmt == OutputFormat.MARKDOWN:
            score, valid, feedback = self._evaluate_markdown(text)
        else:
            valid = len(text) > 0
            score = PASS_SCORE if valid else FAIL_SCORE
            feedback = "Valid plain text" if valid else "Empty response"

        return EvalResult(
            score=score,
            passed=valid,
            feedback=feedback,
            metadata={"format": fmt.value, "format_valid": valid},
        )

    def _evaluate_markdown(self, text: str) -> tuple[int, bool, str]:
        valid = len(text) > 0
        if self.params.require_headers and not self.MARKDOWN_HEADER.search(text):
            return PASS_SCORE - 50, valid, "Missing markdown headers"
        return PASS_SCORE, valid, "Valid markdown format"

    def _evaluate_json(self, text: str) -> tuple[int, bool, str]:
        try:
            data = json.loads(text)
        except ValueError:
            return FAIL_SCORE, False, "Invalid JSON format"

        keys = list(data.keys()) if isinstance(data, dict) else []

        if self.params.schema_ is not None:
            obj = data if isinstance(data, dict) else {}
            errors: list[str] = []
            score = self._score_schema(obj, self.params.schema_, errors)
            if errors:
                return score, True, f"Schema validation errors: {'; '.join(errors)}"
            return score, True, "Valid JSON matching schema"

        required = self.params.required_keys
        if not required:
            return PASS_SCORE, True, "Valid JSON format"

        missing = [k for k in required if k not in keys]
        score = round_half_up((len(required) - len(missing)) / len(required) * 100)
        if missing:
            return score, True, f"Valid JSON but missing keys: {', '.join(missing)}"
        return score, True, "Valid JSON with all required keys"

    def _score_schema(self, data: dict, schema: JsonSchemaSpec, errors: list[str]) -> int:
        score = PASS_SCORE

        if schema.required_keys:
            missing = [k for k in schema.required_keys if k not in data]
            if missing:
                errors.append(f"Missing required keys: {', '.join(missing)}")
                score -= round_half_up(len(missing) / len(schema.required_keys) * 50)

        if self.params.strict and (schema.required_keys or schema.optional_keys):
            allowed = set(schema.required_keys) | set(schema.optional_keys)
            extra = [k for k in data if k not in allowed]
            if extra:
                errors.append(f"Extra keys not allowed in strict mode: {', '.join(extra)}")
                score -= 20

        for key, expected_type in schema.types.items():
            if key not in data:
                continue
            check = self.TYPE_CHECKS.get(expected_type.lower())
            # Unknown type names are not validated
            if check is not None and not check(data[key]):
                errors.append(f"'{key}' has wrong type (expected {expected_type})")
                score -= 10

        for key, nested_schema in schema.nested_structure.items():
            if key not in data:
                continue
            nested = data[key]
            if isinstance(nested, dict):
                score = min(score, self._score_schema(nested, nested_schema, errors))
            else:
                errors.append(f"Key '{key}' should be an object for nested validation")
                score -= 15

        return max(score, 0)
