from __future__ import annotations

import codecs
import logging
from typing import Any, AsyncIterator

import httpx

from .errors import DecodeStreamError, ResponseFormatError, TransportError

log = logging.getLogger("imagetools.client")

# Streaming uses read=None so that gaps between chunks are not limited
# (the model may pause while producing), while connect/write stay short.
_STREAM_TIMEOUT = httpx.Timeout(connect=15.0, read=None, write=15.0, pool=5.0)


class ImageToolsClient:
    """POSTs chat-completion payloads to a single endpoint. No retries."""

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _client(self, timeout: float | httpx.Timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def complete(self, payload: dict[str, Any]) -> dict[str, Any]:
        log.info("POST %s model=%s stream=false", self.endpoint, payload.get("model"))
        try:
            async with self._client(self.timeout) as client:
                response = await client.post(self.endpoint, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise TransportError(None, "request timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(None, f"network error: {exc}") from exc
        if not response.is_success:
            log.warning("Endpoint returned HTTP %d", response.status_code)
            raise TransportError(response.status_code, response.reason_phrase)
        try:
            document = response.json()
        except ValueError as exc:
            raise ResponseFormatError("Response body is not JSON") from exc
        if not isinstance(document, dict):
            raise ResponseFormatError("Response body is not a JSON object")
        return document

    async def open_stream(self, payload: dict[str, Any]) -> AsyncIterator[bytes]:
        """Yield the raw response body chunk by chunk, in arrival order.

        The status is checked before the first chunk is yielded, so a
        non-success reply raises :class:`TransportError` without any data
        reaching the caller.
        """
        log.info("POST %s model=%s stream=true", self.endpoint, payload.get("model"))
        try:
            async with self._client(_STREAM_TIMEOUT) as client:
                async with client.stream(
                    "POST", self.endpoint, json=payload, headers=self._headers()
                ) as response:
                    if not response.is_success:
                        log.warning("Endpoint returned HTTP %d", response.status_code)
                        raise TransportError(response.status_code, response.reason_phrase)
                    async for chunk in response.aiter_bytes():
                        if chunk:
                            yield chunk
        except httpx.TimeoutException as exc:
            raise TransportError(None, "streaming timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(None, f"streaming network error: {exc}") from exc

    async def send(self, payload: dict[str, Any]) -> dict[str, Any] | AsyncIterator[bytes]:
        if payload.get("stream"):
            return self.open_stream(payload)
        return await self.complete(payload)

    async def fetch(self, url: str) -> bytes:
        """GET an image link returned by the model. The API key is not sent."""
        log.info("GET %s", url)
        try:
            async with self._client(self.timeout) as client:
                response = await client.get(url, follow_redirects=True)
        except httpx.TimeoutException as exc:
            raise TransportError(None, "download timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(None, f"download failed: {exc}") from exc
        if not response.is_success:
            log.warning("Image host returned HTTP %d", response.status_code)
            raise TransportError(response.status_code, response.reason_phrase)
        if not response.content:
            raise ResponseFormatError("Downloaded image is empty")
        return response.content


def message_content(document: dict[str, Any]) -> str:
    """Return ``choices[0].message.content`` or an empty string."""
    try:
        content = document["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content if isinstance(content, str) else ""


async def accumulate_text(chunks: AsyncIterator[bytes]) -> AsyncIterator[str]:
    """Decode *chunks* as UTF-8 and yield the whole buffer after each one.

    The buffer only ever grows. Multi-byte characters split across chunks
    are held back until complete. Event framing inside the text (SSE
    ``data:`` lines and the like) is passed through untouched.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="strict")
    buffer = ""
    received = False
    try:
        async for chunk in chunks:
            received = True
            buffer += decoder.decode(chunk)
            yield buffer
        tail = decoder.decode(b"", final=True)
    except UnicodeDecodeError as exc:
        raise DecodeStreamError(f"Stream is not valid UTF-8: {exc.reason}") from exc
    except TransportError as exc:
        if exc.status is not None or not received:
            raise
        raise DecodeStreamError(f"Stream interrupted: {exc.status_text}") from exc
    if tail:
        buffer += tail
        yield buffer
