"""Provider health checks: validate each backend's key before a conversation."""

import asyncio
import logging

from roundtable.credentials import CredentialSource
from roundtable.providers.base import AIProvider

logger = logging.getLogger(__name__)


async def _check_one(
    name: str,
    provider: AIProvider,
    credentials: CredentialSource,
) -> tuple[str, bool, int]:
    """Validate a single provider. Returns (name, ok, model_count)."""
    key = credentials.get_credential(name)
    if provider.requires_key and not key:
        return name, False, 0
    ok = await provider.validate_key(key or "")
    model_count = len(await provider.fetch_models(key)) if ok else 0
    return name, ok, model_count


async def run_health_checks(
    providers: dict[str, AIProvider],
    credentials: CredentialSource,
) -> dict[str, tuple[bool, int]]:
    """Check all providers in parallel.

    Returns:
        Dict mapping provider name -> (ok, model_count). model_count is 0
        when ok is False.
    """
    results = await asyncio.gather(*(_check_one(n, p, credentials) for n, p in providers.items()))
    for name, ok, count in results:
        logger.debug("Health check %s: ok=%s models=%d", name, ok, count)
    return {name: (ok, count) for name, ok, count in results}
