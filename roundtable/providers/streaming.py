"""Line framing shared by every streaming backend.

Backends deliver newline-terminated records, but the transport is free to
split bytes anywhere. ``LineBuffer`` keeps the incomplete tail between chunks
so that only whole lines ever reach a parser, and ``stream_lines`` wraps an
``httpx`` streaming request so callers see lines plus ``ProviderError``s and
nothing transport-specific.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from roundtable.providers.base import AuthenticationError, ProtocolError, TransportError

logger = logging.getLogger(__name__)

SSE_PREFIX = "data: "
SSE_DONE = "[DONE]"


class LineBuffer:
    """Accumulates text chunks and releases complete lines only."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> list[str]:
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [line.rstrip("\r") for line in lines]


def _status_error(provider_name: str, status_code: int, body: str) -> Exception:
    detail = body.strip()[:200]
    if status_code in (401, 403):
        return AuthenticationError(provider_name, f"HTTP {status_code}: {detail}")
    return ProtocolError(provider_name, f"HTTP {status_code}: {detail}")


async def stream_lines(
    client: httpx.AsyncClient,
    provider_name: str,
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    payload: dict[str, Any] | None = None,
) -> AsyncIterator[str]:
    """Open a streaming request and yield complete text lines as they arrive.

    Closing the generator exits the ``httpx`` stream context, which closes
    the connection.

    Raises:
        AuthenticationError: HTTP 401 or 403.
        ProtocolError: Any other non-success status, or a body httpx cannot decode.
        TransportError: Connect, read or timeout failure.
    """
    try:
        async with client.stream(method, url, headers=headers, json=payload) as response:
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                logger.error("%s HTTP error: %d - %s", provider_name, response.status_code, body[:200])
                raise _status_error(provider_name, response.status_code, body)

            buffer = LineBuffer()
            async for chunk in response.aiter_text():
                for line in buffer.feed(chunk):
                    yield line

            if buffer.pending.strip():
                logger.debug("%s stream closed with unterminated line: %r", provider_name, buffer.pending[:100])
    except httpx.TransportError as exc:
        raise TransportError(provider_name, f"Connection failed: {exc}") from exc
    except httpx.HTTPError as exc:
        # Undecodable body (bad gzip, broken chunking) and the like
        raise ProtocolError(provider_name, f"Invalid response: {exc}") from exc


def sse_data(line: str) -> str | None:
    """Return the payload of a ``data: `` line, or None for any other line."""
    if not line.startswith(SSE_PREFIX):
        return None
    return line[len(SSE_PREFIX):]


def parse_record(text: str, provider_name: str) -> dict[str, Any] | None:
    """Decode one JSON object record; malformed input is skipped (None)."""
    try:
        record = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("%s: skipping malformed line: %r", provider_name, text[:100])
        return None
    if not isinstance(record, dict):
        logger.debug("%s: skipping non-object record: %r", provider_name, text[:100])
        return None
    return record


def error_message(error: Any, default: str = "Stream reported an error") -> str:
    """Pull a human-readable message out of a failure record's error field."""
    if isinstance(error, dict):
        return str(error.get("message") or default)
    return str(error) if error else default
