"""Backend id → provider class table, and construction from config."""

import asyncio
import logging

from config.config_loader import AppConfig
from roundtable.errors import ConfigurationError
from roundtable.providers.anthropic import AnthropicProvider
from roundtable.providers.base import AIProvider
from roundtable.providers.ollama import OllamaProvider
from roundtable.providers.openai_compat import (
    LMStudioProvider,
    OpenAIProvider,
    OpenRouterProvider,
    XAIProvider,
)
from roundtable.providers.openclaw import OpenClawProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openrouter": OpenRouterProvider,
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "xai": XAIProvider,
    "openclaw": OpenClawProvider,
    "lmstudio": LMStudioProvider,
    "ollama": OllamaProvider,
}


def build_providers(config: AppConfig) -> dict[str, AIProvider]:
    """Instantiate every configured backend that has a registered class."""
    providers: dict[str, AIProvider] = {}
    for name, provider_cfg in config.providers.items():
        if name not in PROVIDER_CLASSES:
            logger.warning("Provider '%s' unknown, skipping", name)
            continue
        providers[name] = PROVIDER_CLASSES[name](provider_cfg)
    return providers


def get_provider(providers: dict[str, AIProvider], backend_id: str | None) -> AIProvider:
    """Resolve a persona's backend id. Unknown or missing ids are a configuration error."""
    if not backend_id or backend_id not in providers:
        raise ConfigurationError(f"Unknown provider: {backend_id!r}")
    return providers[backend_id]


async def close_providers(providers: dict[str, AIProvider]) -> None:
    await asyncio.gather(*(p.close() for p in providers.values()))
