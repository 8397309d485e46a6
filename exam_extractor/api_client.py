"""
Model API Client for Vision-based Question Extraction.

This module provides:
- VisionModelClient: one vision call with an explicit credential
- RateLimitedExecutor: credential rotation with retry on quota errors
- TokenUsage: cumulative token tracking

The SDK's own retries are disabled so that every rate-limit response reaches
the executor, which is the only place where failover to another key happens.

Usage:
    pool = CredentialPool(["key-a", "key-b"])
    client = VisionModelClient()
    executor = RateLimitedExecutor(pool)

    text = await executor.run(
        lambda key: client.generate(key, prompt, page_image),
        operation="page 3 extraction",
    )
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import openai
from openai import AsyncOpenAI

from .credentials import CredentialPool, mask_credential
from .exceptions import (
    APIError,
    APIConnectionError,
    APIRateLimitError,
    CredentialsExhaustedError,
    is_rate_limit_error,
)
from .models import GenerationSettings
from .pdf_utils import PageImage


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
DEFAULT_MODEL = "gemini-1.5-flash"


# =============================================================================
# TOKEN USAGE
# =============================================================================


@dataclass
class TokenUsage:
    """
    Cumulative token usage tracker.

    Tracks total tokens used across multiple API calls.
    """

    input_tokens: int = 0
    output_tokens: int = 0
    request_count: int = 0

    def add(self, input_tokens: int, output_tokens: int) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.request_count += 1

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def snapshot(self) -> "TokenUsage":
        return TokenUsage(self.input_tokens, self.output_tokens, self.request_count)


# =============================================================================
# MODEL CLIENT
# =============================================================================


def _retry_after_seconds(error: openai.APIStatusError) -> Optional[float]:
    response = getattr(error, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class VisionModelClient:
    """
    Vision call against an OpenAI-compatible chat completions endpoint.

    One AsyncOpenAI client is kept per credential. The credential is chosen
    by the caller (normally RateLimitedExecutor), never by this class.

    Usage:
        client = VisionModelClient(model="gemini-1.5-flash")
        text = await client.generate("key-a", "Extract the questions...", page_image)
        print(client.usage.total_tokens)
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        base_url: Optional[str] = DEFAULT_BASE_URL,
        settings: Optional[GenerationSettings] = None,
        timeout: float = 120.0,
    ):
        """
        Args:
            model: Model name on the endpoint
            base_url: OpenAI-compatible endpoint (None for api.openai.com)
            settings: Default sampling settings
            timeout: Per-request timeout in seconds
        """
        self.model = model
        self.base_url = base_url
        self.settings = settings or GenerationSettings()
        self.timeout = timeout
        self.usage = TokenUsage()
        self._clients: dict[str, AsyncOpenAI] = {}

    def _client_for(self, credential: str) -> AsyncOpenAI:
        client = self._clients.get(credential)
        if client is None:
            client = AsyncOpenAI(
                api_key=credential,
                base_url=self.base_url,
                max_retries=0,
                timeout=self.timeout,
            )
            self._clients[credential] = client
        return client

    def build_messages(self, prompt: str, image: PageImage) -> list[dict]:
        """One user message: the prompt text followed by the page image."""
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    image.to_api_format(),
                ],
            }
        ]

    async def generate(
        self,
        credential: str,
        prompt: str,
        image: PageImage,
        settings: Optional[GenerationSettings] = None,
    ) -> str:
        """
        Issue one vision call and return the raw text of the reply.

        Returns:
            The reply text ("" if the model returned no content)

        Raises:
            APIRateLimitError: HTTP 429 / quota exhausted
            APIConnectionError: Network failure or timeout
            APIError: Any other HTTP error status
        """
        settings = settings or self.settings
        extra_body = {"top_k": settings.top_k} if settings.top_k is not None else None

        logger.debug(f"Model call with key {mask_credential(credential)} (page {image.page_number})")

        try:
            response = await self._client_for(credential).chat.completions.create(
                model=self.model,
                messages=self.build_messages(prompt, image),
                temperature=settings.temperature,
                top_p=settings.top_p,
                max_tokens=settings.max_output_tokens,
                extra_body=extra_body,
            )
        except openai.RateLimitError as e:
            raise APIRateLimitError(_retry_after_seconds(e), e) from e
        except openai.APIConnectionError as e:
            raise APIConnectionError(original_error=e) from e
        except openai.APIStatusError as e:
            raise APIError("Model API request failed", e, e.status_code) from e

        usage = getattr(response, "usage", None)
        if usage is not None:
            self.usage.add(usage.prompt_tokens or 0, usage.completion_tokens or 0)

        if not response.choices:
            return ""
        choice = response.choices[0]
        if choice.finish_reason == "length":
            logger.warning(f"Page {image.page_number}: response truncated at max tokens")
        return choice.message.content or ""


# =============================================================================
# RATE-LIMITED EXECUTOR
# =============================================================================


class RateLimitedExecutor:
    """
    Runs one logical request with credential failover.

    Each attempt acquires the least-used credential from the pool. A
    rate-limit failure waits backoff_seconds and retries with the next
    credential, at most once per credential in the pool. Any other error
    propagates immediately.

    Usage:
        executor = RateLimitedExecutor(pool, backoff_seconds=2.0)
        text = await executor.run(lambda key: client.generate(key, prompt, image))
    """

    def __init__(self, pool: CredentialPool, backoff_seconds: float = 2.0):
        self.pool = pool
        self.backoff_seconds = backoff_seconds

    @property
    def max_attempts(self) -> int:
        return len(self.pool)

    async def run(
        self,
        request: Callable[[str], Awaitable[T]],
        operation: str = "model call",
    ) -> T:
        """
        Execute request(credential) until it succeeds or every key is rate-limited.

        Args:
            request: Coroutine function taking a credential
            operation: Label used in logs and in the exhaustion error

        Raises:
            CredentialsExhaustedError: All attempts hit rate limits
        """
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            credential = self.pool.acquire()
            try:
                return await request(credential)
            except Exception as e:
                if not is_rate_limit_error(e):
                    raise
                last_error = e
                logger.warning(
                    f"{operation}: key {mask_credential(credential)} rate-limited "
                    f"(attempt {attempt}/{self.max_attempts})"
                )

            if attempt < self.max_attempts and self.backoff_seconds > 0:
                await asyncio.sleep(self.backoff_seconds)

        logger.error(f"{operation}: all {self.max_attempts} credentials exhausted")
        raise CredentialsExhaustedError(self.max_attempts, operation, last_error)
