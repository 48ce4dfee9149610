"""Gemini agents via google-genai; the personality is the system_instruction."""

import logging

from google import genai
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from yui_council.models import ModelResponse
from yui_council.providers.base import AIProvider, ProviderError, build_response, require_api_key, timed_request

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        self._client = genai.Client(api_key=require_api_key(config))

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
        generation = genai_types.GenerateContentConfig(
            max_output_tokens=self._config.max_tokens,
            system_instruction=system_prompt or None,
        )
        response, latency = await timed_request(
            self._config,
            self._client.aio.models.generate_content(
                model=self._config.model, contents=prompt, config=generation
            ),
            timeout_sec,
        )

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        usage = response.usage_metadata
        token_count = usage.total_token_count if usage else None
        logger.debug("Gemini round %d: %.2fs, %s tokens", round_number, latency, token_count)
        return build_response(self._config, round_number, response.text, latency, token_count)
