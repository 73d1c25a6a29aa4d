import json
from collections.abc import AsyncIterator

import httpx


def gemini_segment(*texts: str) -> dict[str, object]:
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": text} for text in texts]},
                "index": 0,
            }
        ]
    }


def gemini_array_body(*segments: dict[str, object]) -> bytes:
    """Render segments the way ``streamGenerateContent`` frames them without ``alt=sse``."""
    return ("[" + ",\r\n".join(json.dumps(segment) for segment in segments) + "]").encode()


def sse_payloads(text: str) -> list[object]:
    """Split an event-stream body into decoded payloads; ``[DONE]`` stays a string."""
    payloads: list[object] = []
    for frame in text.split("\n\n"):
        if not frame:
            continue
        assert frame.startswith("data: ")
        data = frame.removeprefix("data: ")
        payloads.append(data if data == "[DONE]" else json.loads(data))
    return payloads


class FakeGemini:
    """Scripted upstream served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.error_body: dict[str, object] = {
            "error": {"code": 500, "message": "boom", "status": "INTERNAL"}
        }
        self.chunks: list[bytes] = [
            gemini_array_body(gemini_segment("Hello"), gemini_segment(" world"))
        ]
        self.raise_after_chunks: Exception | None = None

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def last_json(self) -> dict[str, object]:
        return json.loads(self.requests[-1].content)

    async def _body(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk
        if self.raise_after_chunks is not None:
            raise self.raise_after_chunks

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json=self.error_body)
        return httpx.Response(
            200, content=self._body(), headers={"content-type": "application/json"}
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)
