"""
Tests for the rate-limited executor and the vision model client.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from exam_extractor import (
    APIError,
    APIRateLimitError,
    CredentialPool,
    CredentialsExhaustedError,
    GenerationSettings,
    PageImage,
    RateLimitedExecutor,
    VisionModelClient,
)
from exam_extractor.exceptions import APIConnectionError


def _request_recorder(outcomes):
    """Request function that pops one outcome per call (exception or value)."""
    seen = []

    async def request(credential):
        seen.append(credential)
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return request, seen


class TestRateLimitedExecutor:
    """Tests for credential failover."""

    def test_success_on_first_attempt(self, pool):
        executor = RateLimitedExecutor(pool, backoff_seconds=0)
        request, seen = _request_recorder(["[]"])

        assert asyncio.run(executor.run(request)) == "[]"
        assert seen == ["key-a"]

    @pytest.mark.parametrize("size", [1, 2, 3, 5])
    def test_exactly_pool_size_attempts_before_exhaustion(self, size):
        pool = CredentialPool([f"key-{i}" for i in range(size)])
        executor = RateLimitedExecutor(pool, backoff_seconds=0)
        request, seen = _request_recorder([APIRateLimitError()])

        with pytest.raises(CredentialsExhaustedError) as exc_info:
            asyncio.run(executor.run(request, operation="page 1 extraction"))

        assert len(seen) == size
        assert len(set(seen)) == size
        assert exc_info.value.attempts == size
        assert isinstance(exc_info.value.last_error, APIRateLimitError)

    def test_rate_limit_then_success_rotates_key(self, pool):
        executor = RateLimitedExecutor(pool, backoff_seconds=0)
        request, seen = _request_recorder([Exception("429 Resource has been exhausted"), "[]"])

        assert asyncio.run(executor.run(request)) == "[]"
        assert seen == ["key-a", "key-b"]

    def test_other_errors_propagate_immediately(self, pool):
        executor = RateLimitedExecutor(pool, backoff_seconds=0)
        request, seen = _request_recorder([APIError("Bad request", status_code=400)])

        with pytest.raises(APIError):
            asyncio.run(executor.run(request))
        assert len(seen) == 1

    def test_backoff_between_attempts_but_not_after_last(self, pool, mocker):
        sleep = mocker.patch("exam_extractor.api_client.asyncio.sleep", new_callable=AsyncMock)
        executor = RateLimitedExecutor(pool, backoff_seconds=2.0)
        request, _ = _request_recorder([APIRateLimitError()])

        with pytest.raises(CredentialsExhaustedError):
            asyncio.run(executor.run(request))

        assert sleep.await_count == 2
        sleep.assert_awaited_with(2.0)

    def test_failed_attempts_still_count_against_keys(self, pool):
        executor = RateLimitedExecutor(pool, backoff_seconds=0)
        request, _ = _request_recorder([APIRateLimitError()])

        with pytest.raises(CredentialsExhaustedError):
            asyncio.run(executor.run(request))
        assert pool.usage() == {"key-a": 1, "key-b": 1, "key-c": 1}


def _completion(content="[]", finish_reason="stop", prompt_tokens=100, completion_tokens=20):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _status_response(status_code, headers=None):
    request = httpx.Request("POST", "https://example.test/v1/chat/completions")
    return httpx.Response(status_code, request=request, headers=headers or {})


class TestVisionModelClient:
    """Tests for VisionModelClient with a mocked AsyncOpenAI."""

    @pytest.fixture
    def create(self, mocker):
        create = AsyncMock(return_value=_completion('[{"question_type": "MCQ"}]'))
        sdk_client = MagicMock()
        sdk_client.chat.completions.create = create
        factory = mocker.patch("exam_extractor.api_client.AsyncOpenAI", return_value=sdk_client)
        create.factory = factory
        return create

    @pytest.fixture
    def image(self):
        return PageImage(page_number=2, image_base64="aW1n")

    def test_generate_returns_text(self, create, image):
        client = VisionModelClient()
        text = asyncio.run(client.generate("key-a", "Extract", image))
        assert text == '[{"question_type": "MCQ"}]'

    def test_generation_settings_are_sent(self, create, image):
        client = VisionModelClient(model="gemini-1.5-flash")
        asyncio.run(client.generate("key-a", "Extract", image))

        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "gemini-1.5-flash"
        assert kwargs["temperature"] == 0.1
        assert kwargs["top_p"] == 0.8
        assert kwargs["max_tokens"] == 8192
        assert kwargs["extra_body"] == {"top_k": 1}

        content = kwargs["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "Extract"}
        assert content[1]["image_url"]["url"] == "data:image/png;base64,aW1n"

    def test_top_k_omitted_when_unset(self, create, image):
        client = VisionModelClient(settings=GenerationSettings(top_k=None))
        asyncio.run(client.generate("key-a", "Extract", image))
        assert create.await_args.kwargs["extra_body"] is None

    def test_one_sdk_client_per_credential(self, create, image):
        client = VisionModelClient()
        asyncio.run(client.generate("key-a", "Extract", image))
        asyncio.run(client.generate("key-a", "Extract", image))
        asyncio.run(client.generate("key-b", "Extract", image))

        api_keys = [call.kwargs["api_key"] for call in create.factory.call_args_list]
        assert api_keys == ["key-a", "key-b"]
        assert all(call.kwargs["max_retries"] == 0 for call in create.factory.call_args_list)

    def test_usage_is_tracked(self, create, image):
        client = VisionModelClient()
        asyncio.run(client.generate("key-a", "Extract", image))
        asyncio.run(client.generate("key-b", "Extract", image))
        assert client.usage.input_tokens == 200
        assert client.usage.output_tokens == 40
        assert client.usage.request_count == 2

    def test_empty_content_returns_empty_string(self, create, image):
        create.return_value = _completion(content=None)
        client = VisionModelClient()
        assert asyncio.run(client.generate("key-a", "Extract", image)) == ""

    def test_rate_limit_is_mapped(self, create, image):
        create.side_effect = openai.RateLimitError(
            "Resource exhausted",
            response=_status_response(429, {"retry-after": "7"}),
            body=None,
        )
        client = VisionModelClient()

        with pytest.raises(APIRateLimitError) as exc_info:
            asyncio.run(client.generate("key-a", "Extract", image))
        assert exc_info.value.retry_after == 7.0

    def test_connection_error_is_mapped(self, create, image):
        create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", "https://example.test/v1/chat/completions")
        )
        client = VisionModelClient()

        with pytest.raises(APIConnectionError):
            asyncio.run(client.generate("key-a", "Extract", image))

    def test_status_error_is_mapped(self, create, image):
        create.side_effect = openai.BadRequestError(
            "Invalid image",
            response=_status_response(400),
            body=None,
        )
        client = VisionModelClient()

        with pytest.raises(APIError) as exc_info:
            asyncio.run(client.generate("key-a", "Extract", image))
        assert exc_info.value.status_code == 400
