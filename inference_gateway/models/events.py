"""Downstream event types and their ``text/event-stream`` framing."""

import json as json_mod
from dataclasses import dataclass


@dataclass(frozen=True)
class Delta:
    text: str


@dataclass(frozen=True)
class StreamError:
    message: str


@dataclass(frozen=True)
class Done:
    pass


DownstreamEvent = Delta | StreamError | Done

DONE_FRAME = "data: [DONE]\n\n"


def is_terminal(event: DownstreamEvent) -> bool:
    return isinstance(event, Done | StreamError)


def sse_frame(event: DownstreamEvent) -> str:
    if isinstance(event, Done):
        return DONE_FRAME
    payload: dict[str, object]
    if isinstance(event, Delta):
        payload = {"choices": [{"delta": {"content": event.text}}]}
    else:
        payload = {"error": event.message}
    return f"data: {json_mod.dumps(payload, separators=(',', ':'), ensure_ascii=False)}\n\n"
