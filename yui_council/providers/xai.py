"""Grok agents through xAI's OpenAI-compatible endpoint."""

from openai import AsyncOpenAI

from yui_council.providers.base import ProviderError
from yui_council.providers.openai_provider import OpenAIProvider


class XAIProvider(OpenAIProvider):
    """Same request shape as OpenAI; settings.yaml must give the model a base_url."""

    def _make_client(self, api_key: str) -> AsyncOpenAI:
        if not self._config.base_url:
            raise ProviderError(self._config.name, "base_url is required for xAI provider")
        return AsyncOpenAI(api_key=api_key, base_url=self._config.base_url)
