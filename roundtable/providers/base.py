"""Abstract base for all streaming text backends and the errors they raise."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from config.config_loader import ProviderConfig
from roundtable.models import ChatConfig, ModelInfo


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AuthenticationError(ProviderError):
    """Missing credential, or the backend rejected the one supplied."""


class ProtocolError(ProviderError):
    """Non-success HTTP status or an explicit failure record in the stream."""


class TransportError(ProviderError):
    """The connection failed or was reset."""


class AIProvider(ABC):
    """Abstract base for all streaming text backends.

    Subclasses set ``name`` and ``requires_key`` and implement the three
    capabilities: key validation, model discovery and streaming chat.
    """

    name: str = ""
    requires_key: bool = True

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_sec),
        )

    @property
    def base_url(self) -> str:
        return self._config.base_url

    def _require_key(self, api_key: str | None) -> None:
        if self.requires_key and not api_key:
            raise AuthenticationError(self.name, "API key required")

    @abstractmethod
    async def validate_key(self, key: str) -> bool:
        """Return True if the backend accepts ``key``. Never raises."""
        ...

    @abstractmethod
    async def fetch_models(self, key: str | None = None) -> list[ModelInfo]:
        """Return the models this backend offers, or [] on any failure."""
        ...

    @abstractmethod
    def chat(self, config: ChatConfig, api_key: str | None = None) -> AsyncIterator[str]:
        """Stream the completion for ``config`` as text fragments.

        Args:
            config: Model, ordered messages and sampling parameters.
            api_key: Credential for backends that require one.

        Yields:
            Text fragments in the order the backend produced them.

        Raises:
            AuthenticationError: Missing key, or HTTP 401/403.
            ProtocolError: Other non-success status or a failure record.
            TransportError: The connection failed mid-request.
        """
        ...

    async def close(self) -> None:
        """Close the HTTP client."""
        if not self._client.is_closed:
            await self._client.aclose()
