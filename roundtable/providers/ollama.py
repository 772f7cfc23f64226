"""Ollama backend: one JSON object per line, terminated by ``done: true``."""

import logging
from collections.abc import AsyncIterator
from typing import Any

from roundtable.models import ChatConfig, ModelInfo
from roundtable.providers.base import AIProvider, ProtocolError
from roundtable.providers.streaming import error_message, parse_record, stream_lines

logger = logging.getLogger(__name__)


def _message_content(record: dict[str, Any]) -> str | None:
    message = record.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


class OllamaProvider(AIProvider):
    """Local or remote Ollama instance; no credential needed."""

    name = "ollama"
    requires_key = False

    async def validate_key(self, key: str = "") -> bool:
        try:
            response = await self._client.get("/api/tags")
            return response.is_success
        except Exception as exc:
            logger.warning("Cannot reach Ollama at %s: %s", self.base_url, exc)
            return False

    async def fetch_models(self, key: str | None = None) -> list[ModelInfo]:
        try:
            response = await self._client.get("/api/tags")
            if not response.is_success:
                return []
            data = response.json()
        except Exception as exc:
            logger.warning("Ollama model listing failed: %s", exc)
            return []
        return [
            ModelInfo(id=m["name"], name=m["name"], provider=self.name)
            for m in data.get("models", [])
            if isinstance(m, dict) and m.get("name")
        ]

    async def chat(self, config: ChatConfig, api_key: str | None = None) -> AsyncIterator[str]:
        payload = {
            "model": config.model,
            "messages": [{"role": m.role, "content": m.content} for m in config.messages],
            "options": {
                "temperature": config.temperature,
                "num_predict": config.max_tokens,
            },
            "stream": True,
        }
        async for line in stream_lines(self._client, self.name, "POST", "/api/chat", payload=payload):
            if not line.strip():
                continue
            record = parse_record(line, self.name)
            if record is None:
                continue
            if "error" in record:
                raise ProtocolError(self.name, error_message(record["error"]))
            content = _message_content(record)
            if content:
                yield content
            if record.get("done"):
                return
