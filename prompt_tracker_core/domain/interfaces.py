"""
Service interfaces (Protocols) shared by the core evaluators.

Storage and dispatch contracts live with the evaluation app module; this
module only holds what the evaluators themselves depend on.
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class JudgeClient(Protocol):
    """Interface for the LLM used by the llm_judge evaluator."""

    def judge(
        self,
        prompt: str,
        model: str,
        schema: dict[str, Any],
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Ask the judge model for a structured verdict.

        Args:
            prompt: The fully rendered judge prompt.
            model: Judge model identifier (e.g. "gpt-4o").
            schema: JSON schema the answer must satisfy.
            timeout: Seconds before the call is abandoned.

        Returns:
            dict: Parsed judge answer with overall_score, criteria_scores, feedback.

        Raises:
            JudgeError: If the call fails, times out, or returns unusable output.
        """
        ...
