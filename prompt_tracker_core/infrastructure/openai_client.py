"""
OpenAI client and judge adapter.

Provides a shared OpenAI client instance and the JudgeClient
implementation used by the llm_judge evaluator.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import openai
from loguru import logger

from prompt_tracker_core.config import settings
from prompt_tracker_core.domain.exceptions import ConfigurationError, JudgeError
from prompt_tracker_core.runtime.errors import ErrorCode

if TYPE_CHECKING:
    from openai import OpenAI


class OpenAIClientSingleton:
    """
    Singleton wrapper for the OpenAI client.

    Usage:
        client = OpenAIClientSingleton.get_instance()
        response = client.chat.completions.create(...)
    """

    _instance: "OpenAI | None" = None

    @classmethod
    def get_instance(cls) -> "OpenAI":
        """
        Get or create the OpenAI client instance.

        Raises:
            ConfigurationError: If OPENAI_API_KEY is not configured.
        """
        if cls._instance is None:
            api_key = settings.OPENAI_API_KEY
            if not api_key:
                raise ConfigurationError(
                    "OPENAI_API_KEY not configured. Set it in .env or environment variables."
                )

            cls._instance = openai.OpenAI(api_key=api_key)
            logger.info("OpenAI client initialized (singleton)")

        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the cached instance (tests, key rotation)."""
        cls._instance = None


def get_openai_client() -> "OpenAI":
    """Convenience function to get the OpenAI client."""
    return OpenAIClientSingleton.get_instance()


class OpenAIJudgeClient:
    """
    JudgeClient backed by OpenAI structured outputs.

    Timeouts, rate limits and connection failures surface as retryable
    JudgeError so async units retry them; malformed answers do too, since
    a second sample usually parses.
    """

    def __init__(self, client: "OpenAI | None" = None, temperature: float | None = None):
        self._client = client
        self.temperature = settings.JUDGE_TEMPERATURE if temperature is None else temperature

    @property
    def client(self) -> "OpenAI":
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    def judge(
        self,
        prompt: str,
        model: str,
        schema: dict[str, Any],
        timeout: float | None = None,
    ) -> dict[str, Any]:
        timeout = timeout or settings.JUDGE_TIMEOUT_SECONDS
        logger.debug(f"Calling judge model {model} (timeout={timeout}s)")

        try:
            completion = self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "llm_judge_evaluation", "schema": schema, "strict": True},
                },
                timeout=timeout,
            )
        except openai.APITimeoutError as e:
            raise JudgeError(
                f"Judge model {model} timed out after {timeout}s", code=ErrorCode.TIMEOUT, cause=e
            ) from e
        except openai.RateLimitError as e:
            raise JudgeError(
                f"Judge model {model} rate limited", code=ErrorCode.RATE_LIMITED, cause=e
            ) from e
        except openai.APIConnectionError as e:
            raise JudgeError(
                f"Could not reach judge model {model}", code=ErrorCode.CONNECTION_ERROR, cause=e
            ) from e
        except openai.APIError as e:
            raise JudgeError(f"Judge model {model} failed: {e}", cause=e) from e

        content = completion.choices[0].message.content or ""
        try:
            answer = json.loads(content)
        except ValueError as e:
            raise JudgeError(
                f"Judge model {model} returned invalid JSON",
                code=ErrorCode.JUDGE_INVALID_OUTPUT,
                cause=e,
            ) from e

        if not isinstance(answer, dict):
            raise JudgeError(
                f"Judge model {model} returned {type(answer).__name__}, expected object",
                code=ErrorCode.JUDGE_INVALID_OUTPUT,
            )
        return answer
