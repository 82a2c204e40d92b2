"""Tests for the OpenAI judge adapter."""

from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from prompt_tracker_core.domain.exceptions import ConfigurationError, JudgeError
from prompt_tracker_core.infrastructure.openai_client import (
    OpenAIClientSingleton,
    OpenAIJudgeClient,
)
from prompt_tracker_core.runtime.errors import ErrorCode

SCHEMA = {"type": "object"}


def _completion(content):
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = content
    return completion


@pytest.fixture
def mock_openai():
    client = MagicMock()
    return client


@pytest.fixture(autouse=True)
def reset_singleton():
    OpenAIClientSingleton.reset()
    yield
    OpenAIClientSingleton.reset()


class TestOpenAIClientSingleton:
    def test_missing_api_key_is_configuration_error(self):
        with patch("prompt_tracker_core.infrastructure.openai_client.settings") as mock_settings:
            mock_settings.OPENAI_API_KEY = ""
            with pytest.raises(ConfigurationError):
                OpenAIClientSingleton.get_instance()

    def test_instance_is_cached(self):
        with patch("prompt_tracker_core.infrastructure.openai_client.settings") as mock_settings, patch(
            "prompt_tracker_core.infrastructure.openai_client.openai.OpenAI"
        ) as mock_cls:
            mock_settings.OPENAI_API_KEY = "sk-test"
            first = OpenAIClientSingleton.get_instance()
            second = OpenAIClientSingleton.get_instance()

        assert first is second
        mock_cls.assert_called_once_with(api_key="sk-test")


class TestOpenAIJudgeClient:
    """Structured output calls and error mapping."""

    def test_returns_parsed_answer(self, mock_openai):
        mock_openai.chat.completions.create.return_value = _completion(
            '{"overall_score": 4, "criteria_scores": {}, "feedback": "ok"}'
        )
        client = OpenAIJudgeClient(client=mock_openai, temperature=0.2)

        answer = client.judge("judge this", model="gpt-4o", schema=SCHEMA, timeout=5)

        assert answer["overall_score"] == 4
        kwargs = mock_openai.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0.2
        assert kwargs["timeout"] == 5
        assert kwargs["messages"] == [{"role": "user", "content": "judge this"}]
        assert kwargs["response_format"]["json_schema"]["schema"] == SCHEMA
        assert kwargs["response_format"]["json_schema"]["strict"] is True

    def test_invalid_json_is_invalid_output(self, mock_openai):
        mock_openai.chat.completions.create.return_value = _completion("not json")

        with pytest.raises(JudgeError) as exc_info:
            OpenAIJudgeClient(client=mock_openai).judge("p", model="m", schema=SCHEMA)

        assert exc_info.value.code == ErrorCode.JUDGE_INVALID_OUTPUT

    def test_non_object_is_invalid_output(self, mock_openai):
        mock_openai.chat.completions.create.return_value = _completion("[1, 2]")

        with pytest.raises(JudgeError) as exc_info:
            OpenAIJudgeClient(client=mock_openai).judge("p", model="m", schema=SCHEMA)

        assert exc_info.value.code == ErrorCode.JUDGE_INVALID_OUTPUT

    def test_timeout_is_retryable(self, mock_openai):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        mock_openai.chat.completions.create.side_effect = openai.APITimeoutError(request=request)

        with pytest.raises(JudgeError) as exc_info:
            OpenAIJudgeClient(client=mock_openai).judge("p", model="m", schema=SCHEMA, timeout=1)

        assert exc_info.value.code == ErrorCode.TIMEOUT
        assert exc_info.value.retryable is True

    def test_connection_error(self, mock_openai):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        mock_openai.chat.completions.create.side_effect = openai.APIConnectionError(request=request)

        with pytest.raises(JudgeError) as exc_info:
            OpenAIJudgeClient(client=mock_openai).judge("p", model="m", schema=SCHEMA)

        assert exc_info.value.code == ErrorCode.CONNECTION_ERROR
