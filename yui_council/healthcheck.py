"""Ping every provider before a dialogue so dead backends can be dropped up front."""

import asyncio
import logging
import time
from dataclasses import dataclass

from yui_council.providers.base import AIProvider

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


@dataclass
class HealthStatus:
    provider: str
    model: str
    ok: bool
    latency_sec: float
    error: str = ""


async def _ping(name: str, provider: AIProvider) -> HealthStatus:
    start = time.monotonic()
    try:
        await asyncio.wait_for(provider.generate(_PING_PROMPT, round_number=0), timeout=_TIMEOUT_SEC)
    except asyncio.TimeoutError:
        logger.debug("Health check timed out for %s", name)
        error = f"No reply within {_TIMEOUT_SEC:.0f}s"
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", name, exc)
        error = str(exc) or type(exc).__name__
    else:
        return HealthStatus(name, provider.model_string(), True, time.monotonic() - start)
    return HealthStatus(name, provider.model_string(), False, time.monotonic() - start, error)


async def run_health_checks(providers: dict[str, AIProvider]) -> dict[str, HealthStatus]:
    """Ping all providers in parallel; keyed by provider name."""
    statuses = await asyncio.gather(*(_ping(n, p) for n, p in providers.items()))
    return {s.provider: s for s in statuses}
