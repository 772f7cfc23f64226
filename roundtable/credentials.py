"""Where the engine gets API keys from."""

import os
from typing import Protocol

from config.config_loader import ProviderConfig


class CredentialSource(Protocol):
    def get_credential(self, backend_id: str) -> str | None:
        ...


class EnvCredentials:
    """Reads each backend's key from the env var named in its ProviderConfig."""

    def __init__(self, providers: dict[str, ProviderConfig]) -> None:
        self._providers = providers

    def get_credential(self, backend_id: str) -> str | None:
        provider_cfg = self._providers.get(backend_id)
        if provider_cfg is None or not provider_cfg.api_key_env:
            return None
        return os.environ.get(provider_cfg.api_key_env, "").strip() or None


class StaticCredentials:
    """Fixed backend id → key mapping."""

    def __init__(self, keys: dict[str, str] | None = None) -> None:
        self._keys = dict(keys or {})

    def get_credential(self, backend_id: str) -> str | None:
        return self._keys.get(backend_id) or None
