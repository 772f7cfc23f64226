"""Anthropic Messages API backend, streamed as typed server-sent events."""

import logging
from collections.abc import AsyncIterator
from typing import Any

import anthropic as anthropic_sdk

from roundtable.models import ChatConfig, ModelInfo
from roundtable.providers.base import AIProvider, ProtocolError
from roundtable.providers.streaming import error_message, parse_record, sse_data, stream_lines

logger = logging.getLogger(__name__)

API_VERSION = "2023-06-01"
_VALIDATION_MODEL = "claude-3-haiku-20240307"

CURATED_MODELS = [
    ("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet"),
    ("claude-3-5-haiku-20241022", "Claude 3.5 Haiku"),
    ("claude-3-opus-20240229", "Claude 3 Opus"),
    ("claude-3-sonnet-20240229", "Claude 3 Sonnet"),
    ("claude-3-haiku-20240307", "Claude 3 Haiku"),
]


def _text_delta(record: dict[str, Any]) -> str | None:
    if record.get("type") != "content_block_delta":
        return None
    delta = record.get("delta")
    if not isinstance(delta, dict):
        return None
    text = delta.get("text")
    return text if isinstance(text, str) else None


class AnthropicProvider(AIProvider):
    """Anthropic Claude via the raw streaming Messages endpoint."""

    name = "anthropic"

    def _headers(self, api_key: str) -> dict[str, str]:
        return {"x-api-key": api_key, "anthropic-version": API_VERSION}

    async def validate_key(self, key: str) -> bool:
        try:
            response = await self._client.post(
                "/v1/messages",
                headers=self._headers(key),
                json={
                    "model": _VALIDATION_MODEL,
                    "max_tokens": 1,
                    "messages": [{"role": "user", "content": "hi"}],
                },
            )
        except Exception as exc:
            logger.warning("anthropic key validation failed: %s", exc)
            return False
        # 400 means the key was accepted but the request itself was refused
        return response.is_success or response.status_code == 400

    def _curated(self) -> list[ModelInfo]:
        return [ModelInfo(id=model_id, name=name, provider=self.name) for model_id, name in CURATED_MODELS]

    async def fetch_models(self, key: str | None = None) -> list[ModelInfo]:
        if not key:
            return self._curated()
        # The SDK owns its HTTP client; some SDK builds reject a plain httpx one
        try:
            async with anthropic_sdk.AsyncAnthropic(
                api_key=key,
                base_url=self.base_url,
                timeout=self._config.timeout_sec,
                max_retries=0,
            ) as sdk:
                models = [m async for m in sdk.models.list()]
        except Exception as exc:
            logger.warning("anthropic model listing failed, using curated list: %s", exc)
            return self._curated()
        return [ModelInfo(id=m.id, name=m.display_name or m.id, provider=self.name) for m in models]

    async def chat(self, config: ChatConfig, api_key: str | None = None) -> AsyncIterator[str]:
        self._require_key(api_key)

        # The system prompt is a top-level field, not a turn
        system = next((m.content for m in config.messages if m.role == "system"), None)
        turns = [
            {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
            for m in config.messages
            if m.role != "system"
        ]
        payload: dict[str, Any] = {
            "model": config.model,
            "max_tokens": config.max_tokens,
            "temperature": min(config.temperature, 1.0),
            "messages": turns,
            "stream": True,
        }
        if system:
            payload["system"] = system

        async for line in stream_lines(
            self._client, self.name, "POST", "/v1/messages",
            headers=self._headers(api_key), payload=payload,
        ):
            data = sse_data(line)
            if data is None:
                continue
            record = parse_record(data, self.name)
            if record is None:
                continue
            record_type = record.get("type")
            if record_type == "error":
                raise ProtocolError(self.name, error_message(record.get("error")))
            if record_type == "message_stop":
                return
            text = _text_delta(record)
            if text:
                yield text
