"""OpenClaw gateway speaking the OpenResponses streaming protocol.

Every record is a typed envelope. Text arrives in
``response.output_text.delta`` envelopes; ``response.failed`` ends the
stream with an error rather than being treated as data.
"""

import logging
from collections.abc import AsyncIterator
from typing import Any

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

DEFAULT_MODEL = "openclaw:main"

TEXT_DELTA = "response.output_text.delta"
FAILED = "response.failed"


class OpenClawProvider(AIProvider):
    name = "openclaw"

    def _headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    async def validate_key(self, key: str) -> bool:
        try:
            response = await self._client.post(
                "/v1/responses",
                headers=self._headers(key),
                json={"model": DEFAULT_MODEL, "input": "hi", "max_output_tokens": 1},
            )
            return response.is_success
        except Exception as exc:
            logger.warning("openclaw key validation failed: %s", exc)
            return False

    async def fetch_models(self, key: str | None = None) -> list[ModelInfo]:
        return [ModelInfo(id=DEFAULT_MODEL, name="OpenClaw (main)", provider=self.name)]

    async def chat(self, config: ChatConfig, api_key: str | None = None) -> AsyncIterator[str]:
        self._require_key(api_key)

        instructions = next((m.content for m in config.messages if m.role == "system"), None)
        payload: dict[str, Any] = {
            "model": config.model,
            "input": [
                {"type": "message", "role": m.role, "content": m.content}
                for m in config.messages
                if m.role != "system"
            ],
            "temperature": config.temperature,
            "max_output_tokens": config.max_tokens,
            "stream": True,
        }
        if instructions:
            payload["instructions"] = instructions

        async for line in stream_lines(
            self._client, self.name, "POST", "/v1/responses",
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
            record_type = record.get("type")
            if record_type == FAILED:
                response = record.get("response")
                error = record.get("error") or (response.get("error") if isinstance(response, dict) else None)
                raise ProtocolError(self.name, error_message(error, "OpenClaw request failed"))
            if record_type == TEXT_DELTA:
                delta = record.get("delta")
                if isinstance(delta, str) and delta:
                    yield delta
