"""Claude agents via the anthropic SDK; the personality goes in the `system` field."""

import logging

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from yui_council.models import ModelResponse
from yui_council.providers.base import AIProvider, ProviderError, build_response, require_api_key, timed_request

logger = logging.getLogger(__name__)


class AnthropicProvider(AIProvider):
    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        self._client = anthropic_sdk.AsyncAnthropic(api_key=require_api_key(config))

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
        request = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            request["system"] = system_prompt

        response, latency = await timed_request(
            self._config, self._client.messages.create(**request), timeout_sec
        )

        text = "\n".join(b.text for b in response.content or [] if b.type == "text")
        if not text:
            raise ProviderError(self._config.name, "No text blocks in response")

        usage = response.usage
        token_count = usage.input_tokens + usage.output_tokens if usage else None
        logger.debug("Claude round %d: %.2fs, %s tokens", round_number, latency, token_count)
        return build_response(self._config, round_number, text, latency, token_count)
