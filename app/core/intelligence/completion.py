"""
Best-effort completion.

Tries an ordered list of models against one shared time budget and hands
back None when every attempt fails, so each caller can apply its own
deterministic fallback.
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Optional, TypeVar

from app.config import settings
from app.infra.claude import ClaudeClient, get_claude_client

logger = logging.getLogger(__name__)

T = TypeVar("T")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        # Remove first line (```json or ```)
        lines = lines[1:]
        # Remove last line if it's closing ```
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return text.strip()


def parse_json_object(text: str) -> dict:
    """Parse a JSON object from an LLM reply.

    Raises:
        ValueError: if the reply is not a JSON object
    """
    data = json.loads(strip_code_fences(text))
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data


class CompletionChain:
    """
    Ordered model fallback with a shared timeout.

    Each model is tried once (the client itself retries transient errors);
    a reply the parser rejects counts as a failure and moves on to the next
    model.
    """

    def __init__(
        self,
        claude_client: Optional[ClaudeClient] = None,
        models: Optional[list[str]] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize chain.

        Args:
            claude_client: Claude client (uses singleton if not provided)
            models: Model ids in order (defaults to settings.completion_models)
            timeout: Total seconds across all attempts
        """
        self._client = claude_client
        self._models = models or settings.completion_models
        self._timeout = timeout or settings.llm_timeout_seconds

    async def _get_client(self) -> Optional[ClaudeClient]:
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        parse: Optional[Callable[[str], T]] = None,
        max_tokens: int = 400,
        temperature: float = 0.0,
    ) -> Optional[Any]:
        """
        Run the chain.

        Args:
            prompt: User prompt
            system_prompt: System prompt
            parse: Converts reply text to a result; raising rejects the reply
            max_tokens: Maximum tokens per reply
            temperature: Sampling temperature

        Returns:
            Parsed result (or stripped text without a parser), None on failure
        """
        client = await self._get_client()
        if client is None:
            return None

        deadline = time.monotonic() + self._timeout

        for model in self._models:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("Completion budget exhausted")
                break

            try:
                response = await asyncio.wait_for(
                    client.generate(
                        prompt=prompt,
                        system_prompt=system_prompt,
                        model=model,
                        max_tokens=max_tokens,
                        temperature=temperature,
                    ),
                    timeout=remaining,
                )
                text = response.content.strip()
                if not text:
                    raise ValueError("Empty completion")
                return parse(text) if parse else text

            except asyncio.TimeoutError:
                logger.warning(f"Completion with {model} timed out")
                break
            except Exception as e:
                logger.warning(f"Completion with {model} failed: {e}")

        return None
