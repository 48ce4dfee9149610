"""Provider interface shared by every SDK backend, plus the helpers they have in common."""

import asyncio
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import TypeVar

from config.config_loader import ModelConfig
from yui_council.models import ModelResponse

T = TypeVar("T")


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


def require_api_key(config: ModelConfig) -> str:
    """Read the model's API key from the environment or raise ProviderError."""
    api_key = os.environ.get(config.api_key_env, "").strip()
    if not api_key:
        raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
    return api_key


async def timed_request(
    config: ModelConfig,
    request: Awaitable[T],
    timeout_sec: float | None = None,
) -> tuple[T, float]:
    """Await an SDK request and return (result, latency).

    timeout_sec overrides config.timeout_sec for this call only.
    Every SDK exception is re-raised as ProviderError; timeouts say "timed out".
    """
    timeout = timeout_sec or config.timeout_sec
    start = time.monotonic()
    try:
        result = await asyncio.wait_for(request, timeout=timeout)
    except TimeoutError as exc:
        raise ProviderError(config.name, f"Request timed out after {timeout}s") from exc
    except Exception as exc:
        raise ProviderError(config.name, f"API call failed: {exc}") from exc
    return result, time.monotonic() - start


def build_response(
    config: ModelConfig,
    round_number: int,
    content: str,
    latency: float,
    token_count: int | None,
) -> ModelResponse:
    return ModelResponse(
        provider=config.name,
        model=config.model,
        round_number=round_number,
        content=content,
        latency_sec=latency,
        token_count=token_count,
    )


class AIProvider(ABC):
    """One LLM backend that can voice any number of agents."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        round_number: int,
        system_prompt: str | None = None,
        timeout_sec: float | None = None,
    ) -> ModelResponse:
        """Generate a response for the given prompt.

        Args:
            prompt: The filled stage template (dialogue, consensus, vote, ...).
            round_number: The dialogue round number (0-based).
            system_prompt: Agent personality, sent as the system instruction.
            timeout_sec: Per-call timeout; defaults to the model config.

        Raises:
            ProviderError: On API failure, timeout, or empty response.
        """
        ...
