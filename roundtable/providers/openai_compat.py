"""OpenAI-compatible chat completions backends: OpenRouter, OpenAI, xAI, LM Studio.

All four stream ``data: {json}`` records terminated by ``data: [DONE]``; the
fragment lives at ``choices[0].delta.content``. They differ only in where
keys are checked and whether a key is needed at all.
"""

import logging
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from roundtable.models import ChatConfig, ModelInfo
from roundtable.providers.base import AIProvider, ProtocolError
from roundtable.providers.streaming import (
    SSE_DONE,
    error_message,
    parse_record,
    sse_data,
    stream_lines,
)

logger = logging.getLogger(__name__)

# LM Studio ignores the key, but the SDK refuses to build a client without one
_PLACEHOLDER_KEY = "not-needed"


def _delta_content(record: dict[str, Any]) -> str | None:
    choices = record.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


class OpenAICompatibleProvider(AIProvider):
    """Chat completions over server-sent events."""

    key_check_path = "/models"
    uses_display_names = False

    def _headers(self, api_key: str | None) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"} if api_key else {}

    async def validate_key(self, key: str) -> bool:
        try:
            response = await self._client.get(self.key_check_path, headers=self._headers(key or None))
            return response.is_success
        except Exception as exc:
            logger.warning("%s key validation failed: %s", self.name, exc)
            return False

    async def fetch_models(self, key: str | None = None) -> list[ModelInfo]:
        if self.requires_key and not key:
            return []
        sdk = AsyncOpenAI(
            api_key=key or _PLACEHOLDER_KEY,
            base_url=self.base_url,
            http_client=self._client,
            max_retries=0,
        )
        try:
            models = [m async for m in sdk.models.list()]
        except Exception as exc:
            logger.warning("%s model listing failed: %s", self.name, exc)
            return []
        return [
            ModelInfo(
                id=m.id,
                name=(getattr(m, "name", None) if self.uses_display_names else None) or m.id,
                provider=self.name,
            )
            for m in models
        ]

    async def chat(self, config: ChatConfig, api_key: str | None = None) -> AsyncIterator[str]:
        self._require_key(api_key)
        payload = {
            "model": config.model,
            "messages": [{"role": m.role, "content": m.content} for m in config.messages],
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "stream": True,
        }
        async for line in stream_lines(
            self._client, self.name, "POST", "/chat/completions",
            headers=self._headers(api_key), payload=payload,
        ):
            data = sse_data(line)
            if data is None:
                continue
            if data == SSE_DONE:
                return
            record = parse_record(data, self.name)
            if record is None:
                continue
            if "error" in record:
                raise ProtocolError(self.name, error_message(record["error"]))
            content = _delta_content(record)
            if content:
                yield content


class OpenRouterProvider(OpenAICompatibleProvider):
    name = "openrouter"
    key_check_path = "/auth/key"
    uses_display_names = True


class OpenAIProvider(OpenAICompatibleProvider):
    name = "openai"


class XAIProvider(OpenAICompatibleProvider):
    name = "xai"


class LMStudioProvider(OpenAICompatibleProvider):
    name = "lmstudio"
    requires_key = False
