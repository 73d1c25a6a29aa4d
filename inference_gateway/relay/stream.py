"""Upstream byte stream → downstream event stream.

A producer task reads the upstream body, scans it into segments and puts
events on a bounded queue; the response body drains that queue. The queue
bound is the backpressure: a slow client stalls the producer, which stalls
reads from upstream.
"""

from __future__ import annotations

import asyncio
import json as json_mod
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing, suppress
from time import perf_counter
from typing import Protocol

import httpx

from inference_gateway.metrics import record_stream_terminal
from inference_gateway.models.events import (
    Delta,
    Done,
    DownstreamEvent,
    StreamError,
    is_terminal,
    sse_frame,
)
from inference_gateway.relay.scanner import SegmentScanner, SegmentTooLarge

logger = logging.getLogger("igw.relay")


class UpstreamFailure(Exception):
    """The upstream stream carried an error payload or an unparseable segment."""


class ByteSource(Protocol):
    def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Yield raw body fragments."""

    async def aclose(self) -> None:
        """Release the underlying connection; must be idempotent."""


def decode_segment(raw: str) -> dict[str, object]:
    try:
        parsed = json_mod.loads(raw)
    except json_mod.JSONDecodeError as exc:
        raise UpstreamFailure(f"Malformed upstream segment: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise UpstreamFailure("Malformed upstream segment: expected an object")
    return parsed


def segment_texts(segment: dict[str, object]) -> list[str]:
    """Return the text parts of one response object in upstream order.

    Raises ``UpstreamFailure`` for an error payload or a blocked prompt.
    """
    error = segment.get("error")
    if error is not None:
        if isinstance(error, dict):
            message = error.get("message") or error.get("status") or "unknown error"
        else:
            message = error
        raise UpstreamFailure(f"Upstream error: {message}")

    candidates = segment.get("candidates")
    if not isinstance(candidates, list):
        feedback = segment.get("promptFeedback")
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            raise UpstreamFailure(f"Prompt blocked by upstream: {feedback['blockReason']}")
        return []

    texts: list[str] = []
    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            continue
        for part in parts:
            if not isinstance(part, dict):
                continue
            text = part.get("text")
            if isinstance(text, str) and text:
                texts.append(text)
    return texts


class StreamRelay:
    def __init__(
        self,
        source: ByteSource,
        queue_size: int = 32,
        max_segment_bytes: int | None = None,
        request_id: str | None = None,
        model: str | None = None,
        record_metrics: bool = True,
    ):
        self._source = source
        self._queue_size = max(queue_size, 1)
        self._max_segment_bytes = max_segment_bytes
        self._request_id = request_id
        self._model = model
        self._record_metrics = record_metrics
        self.delta_count = 0
        self.terminal: DownstreamEvent | None = None

    async def events(self) -> AsyncIterator[DownstreamEvent]:
        """Yield ``Delta`` events then exactly one ``Done`` or ``StreamError``.

        Closing this generator early (client disconnect) cancels the producer
        and releases the upstream connection.
        """
        queue: asyncio.Queue[DownstreamEvent] = asyncio.Queue(maxsize=self._queue_size)
        producer = asyncio.create_task(self._pump(queue))
        try:
            while True:
                event = await queue.get()
                yield event
                if is_terminal(event):
                    return
        finally:
            producer.cancel()
            with suppress(asyncio.CancelledError):
                await producer
            await self._source.aclose()

    async def frames(self) -> AsyncIterator[str]:
        async with aclosing(self.events()) as events:
            async for event in events:
                yield sse_frame(event)

    async def aclose(self) -> None:
        """Release upstream even if ``events`` was never iterated."""
        await self._source.aclose()

    async def _pump(self, queue: asyncio.Queue[DownstreamEvent]) -> None:
        started = perf_counter()
        scanner = SegmentScanner(self._max_segment_bytes)
        terminal: DownstreamEvent = Done()
        try:
            async for chunk in self._source.aiter_bytes():
                for raw in scanner.feed(chunk):
                    for text in segment_texts(decode_segment(raw)):
                        self.delta_count += 1
                        await queue.put(Delta(text=text))
            if scanner.finish():
                logger.debug(
                    "relay_trailing_bytes_discarded",
                    extra={"request_id": self._request_id},
                )
        except asyncio.CancelledError:
            self._log_end("cancelled", started)
            raise
        except httpx.TimeoutException:
            terminal = StreamError(message="Upstream read timed out")
        except httpx.HTTPError as exc:
            terminal = StreamError(message=f"Upstream connection failed: {exc}")
        except UnicodeDecodeError:
            terminal = StreamError(message="Upstream sent bytes that are not valid UTF-8")
        except UpstreamFailure as exc:
            terminal = StreamError(message=str(exc))
        except SegmentTooLarge as exc:
            terminal = StreamError(message=str(exc))
        except Exception:
            logger.exception("relay_failed", extra={"request_id": self._request_id})
            terminal = StreamError(message="Internal relay error")
        finally:
            await self._source.aclose()

        self.terminal = terminal
        self._log_end("done" if isinstance(terminal, Done) else "error", started)
        await queue.put(terminal)

    def _log_end(self, terminal: str, started: float) -> None:
        duration_s = perf_counter() - started
        extra: dict[str, object] = {
            "request_id": self._request_id,
            "model": self._model,
            "terminal": terminal,
            "delta_count": self.delta_count,
            "latency_ms": int(duration_s * 1000),
        }
        if isinstance(self.terminal, StreamError):
            extra["error"] = self.terminal.message
        logger.info("relay_completed", extra=extra)
        if self._record_metrics:
            record_stream_terminal(terminal, self.delta_count, duration_s)
