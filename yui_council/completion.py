"""Text-completion collaborator: one provider call that never raises."""

import logging
import time
from dataclasses import dataclass

from yui_council.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)

_RETRY_TIMEOUT_FACTOR = 1.5


@dataclass
class Completion:
    content: str
    success: bool
    error: str | None = None
    latency_sec: float = 0.0
    timed_out: bool = False

    @property
    def status(self) -> str:
        if self.success:
            return "success"
        return "timeout" if self.timed_out else "error"


def _is_timeout(exc: Exception) -> bool:
    return "timed out" in str(exc).lower()


def _retry_timeout(provider: AIProvider) -> int | None:
    cfg = getattr(provider, "_config", None)
    timeout = getattr(cfg, "timeout_sec", None)
    return int(timeout * _RETRY_TIMEOUT_FACTOR) if timeout else None


async def complete(
    provider: AIProvider,
    prompt: str,
    personality: str | None,
    round_number: int,
) -> Completion:
    """Call a provider, retrying once on timeout with 1.5x the timeout.

    Never raises. Failures come back as Completion(success=False) with the error text.
    The longer timeout is passed to the retry call only; the provider's config is
    shared by every agent it voices and is never modified.
    """
    start = time.monotonic()
    try:
        response = await provider.generate(prompt, round_number, system_prompt=personality)
        return Completion(content=response.content, success=True, latency_sec=time.monotonic() - start)
    except ProviderError as exc:
        if not _is_timeout(exc):
            logger.warning("Provider %s failed in round %d: %s", provider.name(), round_number, exc)
            return Completion("", False, str(exc), time.monotonic() - start)
        first_error = exc
    except Exception as exc:
        logger.warning("Provider %s unexpected failure in round %d: %s", provider.name(), round_number, exc)
        return Completion("", False, f"Unexpected error: {exc}", time.monotonic() - start)

    retry_timeout = _retry_timeout(provider)
    if retry_timeout:
        logger.warning(
            "Provider %s timed out in round %d, retrying with %ds (1.5x)",
            provider.name(), round_number, retry_timeout,
        )
    else:
        logger.warning("Provider %s timed out in round %d, retrying", provider.name(), round_number)
    try:
        response = await provider.generate(
            prompt, round_number, system_prompt=personality, timeout_sec=retry_timeout
        )
        return Completion(content=response.content, success=True, latency_sec=time.monotonic() - start)
    except Exception as retry_exc:
        logger.warning(
            "Provider %s failed after retry in round %d: %s",
            provider.name(), round_number, retry_exc,
        )
        return Completion(
            "",
            False,
            str(retry_exc) or str(first_error),
            time.monotonic() - start,
            timed_out=_is_timeout(retry_exc),
        )
