"""OpenAI chat-completions agents; also the base for OpenAI-compatible endpoints."""

import logging

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from yui_council.models import ModelResponse
from yui_council.providers.base import AIProvider, ProviderError, build_response, require_api_key, timed_request

logger = logging.getLogger(__name__)


def chat_messages(prompt: str, system_prompt: str | None) -> list[dict[str, str]]:
    """Chat-completions message list with the personality as system message."""
    messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
    messages.append({"role": "user", "content": prompt})
    return messages


class OpenAIProvider(AIProvider):
    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        self._client = self._make_client(require_api_key(config))

    def _make_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def generate(
        self,
        prompt: str,
        round_number: int,
        system_prompt: str | None = None,
        timeout_sec: float | None = None,
    ) -> ModelResponse:
        response, latency = await timed_request(
            self._config,
            self._client.chat.completions.create(
                model=self._config.model,
                messages=chat_messages(prompt, system_prompt),
                max_completion_tokens=self._config.max_tokens,
            ),
            timeout_sec,
        )

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError(self._config.name, "Empty response content")

        token_count = response.usage.total_tokens if response.usage else None
        logger.debug("%s round %d: %.2fs, %s tokens", self._config.name, round_number, latency, token_count)
        return build_response(self._config, round_number, content, latency, token_count)
