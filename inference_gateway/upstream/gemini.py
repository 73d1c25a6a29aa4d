"""Gemini ``streamGenerateContent`` client."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import httpx

from inference_gateway.core.errors import UpstreamError
from inference_gateway.upstream.translator import UpstreamRequest

logger = logging.getLogger("igw.upstream")


class UpstreamStream:
    """An accepted upstream response whose body has not been read yet.

    Owns both the HTTP client and the response; ``aclose`` releases them and
    is safe to call more than once.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self._client = client
        self._response = response
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        return self._response.aiter_bytes()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class GeminiStreamClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        stream_format: str = "json",
        connect_timeout_s: float = 10.0,
        read_timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._stream_format = stream_format
        self._timeout = httpx.Timeout(read_timeout_s, connect=connect_timeout_s)
        self._transport = transport

    def _url(self, model: str) -> str:
        return f"{self._base_url}/v1beta/models/{model}:streamGenerateContent"

    async def open_stream(self, request: UpstreamRequest) -> UpstreamStream:
        """Send the request and return once upstream has accepted it.

        Raises ``UpstreamError`` on connection failure, timeout, or a non-2xx
        status; nothing is left open in those cases.
        """
        params = {"alt": "sse"} if self._stream_format == "sse" else None
        headers = {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }
        client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        try:
            http_request = client.build_request(
                "POST", self._url(request.model), params=params, headers=headers, json=request.body
            )
            response = await client.send(http_request, stream=True)
        except httpx.TimeoutException as exc:
            await client.aclose()
            raise UpstreamError(
                f"Upstream request timed out: {exc}", code="upstream_timeout"
            ) from exc
        except httpx.HTTPError as exc:
            await client.aclose()
            raise UpstreamError(
                f"Cannot connect to upstream: {exc}", code="upstream_connection_error"
            ) from exc
        except BaseException:
            await client.aclose()
            raise

        if response.is_success:
            return UpstreamStream(client, response)

        try:
            detail = await self._error_detail(response)
        finally:
            await response.aclose()
            await client.aclose()
        logger.warning(
            "upstream_rejected",
            extra={"model": request.model, "upstream_status": response.status_code},
        )
        raise UpstreamError(
            f"Upstream returned {response.status_code}: {detail}",
            code="upstream_rate_limited" if response.status_code == 429 else "upstream_rejected",
            upstream_status=response.status_code,
        )

    @staticmethod
    async def _error_detail(response: httpx.Response) -> str:
        try:
            raw = await response.aread()
        except httpx.HTTPError:
            return "<unreadable body>"
        text = raw.decode("utf-8", errors="replace").strip()
        return text[:200] or "<empty body>"
