# rolodex/services/openai_service.py
"""
OpenAI Service for contact text understanding.
Thin chat-completions client shared by the extraction and label adapters.
Works against any OpenAI-compatible endpoint via OPENAI_BASE_URL.
"""

import asyncio
from typing import Any

import openai
from openai import AsyncOpenAI

from rolodex.config import settings
from rolodex.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SYSTEM_MESSAGE = (
    "You are a helpful assistant for a contact management app. "
    "You extract and organize contact information."
)


class OpenAIServiceError(Exception):
    """Raised when the model call fails (HTTP error, network error, empty reply)."""

    def __init__(
        self,
        message: str,
        api_error: str | None = None,
        status_code: int | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.api_error = api_error
        self.status_code = status_code
        self.recoverable = recoverable


class OpenAIService:
    """
    Service for chat completions against the configured model.

    Returns the raw reply text; callers own prompt construction and parsing.
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_retries: int | None = None,
        retry_base_delay: float = 1.0,
    ):
        self.model = model or settings.OPENAI_MODEL
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature
        self.max_retries = settings.OPENAI_MAX_RETRIES if max_retries is None else max_retries
        self.retry_base_delay = retry_base_delay
        self.client = client or self._initialize_client()
        logger.info("OpenAI service initialized", model=self.model)

    def _initialize_client(self) -> AsyncOpenAI:
        """Initialize OpenAI async client from settings."""
        if not settings.OPENAI_API_KEY:
            raise OpenAIServiceError("OPENAI_API_KEY not configured in settings", recoverable=False)

        try:
            # Retries are handled in complete() so backoff is logged per attempt
            return AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                base_url=settings.OPENAI_BASE_URL,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
                max_retries=0,
            )
        except Exception as e:
            logger.error("Failed to initialize OpenAI client", error=str(e))
            raise OpenAIServiceError(f"OpenAI client initialization failed: {e}") from e

    async def close(self) -> None:
        await self.client.close()

    async def complete(self, prompt: str) -> str:
        """
        Send one user prompt and return the reply content.

        Args:
            prompt: Fully built user message

        Returns:
            Reply text, stripped

        Raises:
            OpenAIServiceError: If every attempt failed or the reply was empty
        """
        last_error: Exception | None = None
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                logger.debug(
                    "Calling OpenAI chat completions",
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    model=self.model,
                )

                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_MESSAGE},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=self.temperature,
                )

                if not response.choices or not response.choices[0].message.content:
                    raise OpenAIServiceError("Empty response from OpenAI API", recoverable=True)

                result = response.choices[0].message.content.strip()

                logger.info(
                    "OpenAI API call successful",
                    attempt=attempt + 1,
                    response_length=len(result),
                    usage_tokens=response.usage.total_tokens if response.usage else 0,
                )
                return result

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(self.retry_base_delay * (2**attempt), 30)

                logger.warning(
                    "OpenAI rate limit hit, retrying",
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(e),
                )

                if attempt < attempts - 1:
                    await asyncio.sleep(wait_time)

            except openai.APIStatusError as e:
                last_error = e
                # Client errors (bad key, bad request) will not improve on retry
                if 400 <= e.status_code < 500:
                    logger.error(
                        "OpenAI client error (not retrying)",
                        status_code=e.status_code,
                        error=e.message,
                    )
                    raise OpenAIServiceError(
                        "OpenAI request rejected",
                        api_error=e.message,
                        status_code=e.status_code,
                        recoverable=False,
                    ) from e

                logger.warning(
                    "OpenAI API error, retrying",
                    attempt=attempt + 1,
                    status_code=e.status_code,
                    error=e.message,
                )

            except openai.APIConnectionError as e:
                last_error = e
                logger.warning(
                    "OpenAI connection error, retrying",
                    attempt=attempt + 1,
                    error=str(e),
                    error_type=type(e).__name__,
                )

            except openai.APIError as e:
                last_error = e
                logger.warning(
                    "Unexpected OpenAI API error, retrying",
                    attempt=attempt + 1,
                    error=str(e),
                    error_type=type(e).__name__,
                )

            except OpenAIServiceError as e:
                last_error = e
                logger.warning("OpenAI returned an empty reply", attempt=attempt + 1)

        logger.error(
            "OpenAI API call failed after all retries",
            max_attempts=attempts,
            final_error=str(last_error),
        )

        raise OpenAIServiceError(
            f"OpenAI API failed after {attempts} attempts",
            api_error=str(last_error),
            status_code=getattr(last_error, "status_code", None),
            recoverable=True,
        ) from last_error

    def health_check(self) -> dict[str, Any]:
        """Report client configuration without spending tokens."""
        return {
            "healthy": self.client is not None,
            "service": "openai_service",
            "configuration": {
                "model": self.model,
                "temperature": self.temperature,
                "max_retries": self.max_retries,
                "base_url": str(self.client.base_url) if self.client else None,
            },
        }


class ModelNotConfiguredError(OpenAIServiceError):
    """Raised by every call when no OPENAI_API_KEY is configured."""


class UnconfiguredOpenAIService:
    """
    Stand-in client used when OPENAI_API_KEY is unset.

    Every completion fails with ModelNotConfiguredError, so extraction takes
    its local fallback and label suggestion returns nothing.
    """

    model = None

    async def complete(self, prompt: str) -> str:
        raise ModelNotConfiguredError(
            "OPENAI_API_KEY not configured", api_error="not configured", recoverable=False
        )

    async def close(self) -> None:
        return None

    def health_check(self) -> dict[str, Any]:
        return {
            "healthy": False,
            "service": "openai_service",
            "error": "OPENAI_API_KEY not set",
        }
