from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant"]


class ChatMessagePayload(BaseModel):
    role: Role
    # Parts stay untyped here so an unknown part tag surfaces as a translation
    # failure rather than a schema validation error.
    content: str | list[dict[str, Any]]


class ChatRequest(BaseModel):
    messages: list[ChatMessagePayload] = Field(min_length=1)
    model: str | None = None


@dataclass(frozen=True)
class TextPart:
    value: str


@dataclass(frozen=True)
class ImagePart:
    mime_type: str
    data: bytes


ContentPart = TextPart | ImagePart


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: tuple[ContentPart, ...]
