"""
Claude API Client

Manages Anthropic API connections with async support, retry logic,
per-call timeouts and tool-use messages for the conversation layer.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import AsyncAnthropic, APIError, RateLimitError, APIConnectionError

from app.config import settings

logger = logging.getLogger(__name__)


class ClaudeClientError(Exception):
    """Raised when Claude API call fails."""
    pass


@dataclass
class ClaudeResponse:
    """Response from Claude API."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: str
    latency_ms: float


class ClaudeClient:
    """
    Async Claude API client wrapper.

    Features:
    - Async API calls with a request timeout
    - Automatic retries with exponential backoff
    - Raw message access for tool use

    Model fallback is not done here: callers that want it walk
    settings.completion_models themselves (see CompletionChain).
    """

    _instance: Optional["ClaudeClient"] = None

    def __init__(self, api_key: Optional[str] = None):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to settings)
        """
        self.api_key = api_key or settings.anthropic_api_key
        if not self.api_key:
            raise ValueError("Anthropic API key is required")

        self._client = AsyncAnthropic(
            api_key=self.api_key,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )
        self._default_model = settings.claude_extraction_model
        self._max_retries = settings.llm_max_retries

        logger.info(f"ClaudeClient initialized with model={self._default_model}")

    @classmethod
    def is_configured(cls) -> bool:
        """Whether an API key is available."""
        return bool(settings.anthropic_api_key)

    @classmethod
    def get_instance(cls) -> "ClaudeClient":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)."""
        cls._instance = None

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> ClaudeResponse:
        """
        Generate a response from Claude.

        Args:
            prompt: User message
            system_prompt: System prompt (optional)
            model: Model to use (defaults to extraction model)
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature (0.0 for deterministic)

        Returns:
            ClaudeResponse with generated content

        Raises:
            ClaudeClientError: If API call fails after retries
        """
        model = model or self._default_model
        start_time = time.time()

        messages = [{"role": "user", "content": prompt}]

        try:
            response = await self._call_with_retry(
                messages=messages,
                system=system_prompt,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except Exception as e:
            raise ClaudeClientError(f"Claude API call failed: {e}") from e

        latency_ms = (time.time() - start_time) * 1000
        text = "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )

        return ClaudeResponse(
            content=text,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
            latency_ms=latency_ms,
        )

    async def create_message(
        self,
        messages: list[dict],
        system: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 1024,
        tools: Optional[list[dict]] = None,
        temperature: float = 0.0,
    ) -> Any:
        """
        Send a full message list and return the raw Anthropic response.

        Used by the tool-calling orchestrator, which needs content blocks
        and stop_reason.

        Raises:
            ClaudeClientError: If API call fails after retries
        """
        try:
            return await self._call_with_retry(
                messages=messages,
                system=system,
                model=model or settings.claude_agent_model,
                max_tokens=max_tokens,
                temperature=temperature,
                tools=tools,
            )
        except Exception as e:
            raise ClaudeClientError(f"Claude API call failed: {e}") from e

    async def _call_with_retry(
        self,
        messages: list[dict],
        system: Optional[str],
        model: str,
        max_tokens: int,
        temperature: float,
        tools: Optional[list[dict]] = None,
    ) -> Any:
        """Call API with exponential backoff retry."""
        last_error = None

        for attempt in range(self._max_retries + 1):
            try:
                kwargs: dict[str, Any] = {
                    "model": model,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                    "messages": messages,
                }
                if system:
                    kwargs["system"] = system
                if tools:
                    kwargs["tools"] = tools

                return await self._client.messages.create(**kwargs)

            except RateLimitError as e:
                last_error = e
                wait_time = 2 ** attempt
                logger.warning(f"Rate limited, waiting {wait_time}s (attempt {attempt + 1})")
                await asyncio.sleep(wait_time)

            except APIConnectionError as e:
                last_error = e
                wait_time = 2 ** attempt
                logger.warning(f"Connection error, retrying in {wait_time}s (attempt {attempt + 1})")
                await asyncio.sleep(wait_time)

            except APIError as e:
                logger.error(f"API error: {e}")
                raise

        raise last_error or ClaudeClientError("Max retries exceeded")

    async def close(self) -> None:
        """Close the client."""
        await self._client.close()


# Singleton accessor
async def get_claude_client() -> Optional[ClaudeClient]:
    """Get Claude client singleton instance, or None without an API key."""
    if not ClaudeClient.is_configured():
        return None
    return ClaudeClient.get_instance()
