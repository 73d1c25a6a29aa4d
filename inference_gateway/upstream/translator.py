"""Client chat payload → Gemini ``GenerateContentRequest``."""

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from inference_gateway.core.errors import TranslationError
from inference_gateway.models.chat import (
    ChatMessage,
    ChatRequest,
    ContentPart,
    ImagePart,
    TextPart,
)

DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"
MODEL_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[^;,]*)(?P<params>(;[^;,]*)*),(?P<data>.*)$", re.S)

UPSTREAM_ROLES = {"user": "user", "assistant": "model"}


@dataclass(frozen=True)
class UpstreamRequest:
    model: str
    body: dict[str, object]


def parse_chat_request(raw: bytes) -> ChatRequest:
    try:
        return ChatRequest.model_validate_json(raw)
    except ValidationError as exc:
        raise TranslationError(
            f"Invalid chat request: {exc.error_count()} validation error(s)",
            code="invalid_request_body",
        ) from exc


def _decode_base64(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TranslationError("Image data is not valid base64", code="invalid_image_data") from exc


def _image_from_data_url(url: str) -> ImagePart:
    match = DATA_URL_PATTERN.match(url.strip())
    if match is None or ";base64" not in match.group("params"):
        raise TranslationError(
            "Image URL must be a base64 data URL", code="invalid_image_data"
        )
    mime_type = match.group("mime") or DEFAULT_IMAGE_MIME_TYPE
    return ImagePart(mime_type=mime_type, data=_decode_base64(match.group("data")))


def decode_content_part(raw: dict[str, Any]) -> ContentPart:
    part_type = raw.get("type")
    if part_type == "text":
        text = raw.get("text")
        if not isinstance(text, str):
            raise TranslationError("Text part is missing 'text'", code="invalid_content_part")
        return TextPart(value=text)
    if part_type == "image_url":
        image_url = raw.get("image_url")
        url = image_url.get("url") if isinstance(image_url, dict) else image_url
        if not isinstance(url, str):
            raise TranslationError("Image part is missing 'url'", code="invalid_content_part")
        return _image_from_data_url(url)
    if part_type == "image":
        data = raw.get("data")
        if not isinstance(data, str):
            raise TranslationError("Image part is missing 'data'", code="invalid_content_part")
        mime_type = raw.get("mime_type") or raw.get("mimeType") or DEFAULT_IMAGE_MIME_TYPE
        return ImagePart(mime_type=str(mime_type), data=_decode_base64(data))
    raise TranslationError(
        f"Unsupported content part type: {part_type!r}", code="unsupported_content_part"
    )


def to_chat_messages(payload: ChatRequest) -> list[ChatMessage]:
    messages: list[ChatMessage] = []
    for message in payload.messages:
        if isinstance(message.content, str):
            parts: tuple[ContentPart, ...] = (TextPart(value=message.content),)
        else:
            parts = tuple(decode_content_part(raw) for raw in message.content)
        messages.append(ChatMessage(role=message.role, content=parts))
    return messages


def _upstream_part(part: ContentPart) -> dict[str, object]:
    if isinstance(part, TextPart):
        return {"text": part.value}
    return {
        "inline_data": {
            "mime_type": part.mime_type,
            "data": base64.b64encode(part.data).decode("ascii"),
        }
    }


def resolve_model(requested: str | None, default_model: str) -> str:
    model = (requested or "").strip() or default_model
    if not MODEL_ID_PATTERN.match(model):
        raise TranslationError(f"Invalid model identifier: {model!r}", code="invalid_model")
    return model


def translate_request(
    messages: list[ChatMessage],
    model: str | None,
    default_model: str,
    max_output_tokens: int,
) -> UpstreamRequest:
    contents = [
        {
            "role": UPSTREAM_ROLES[message.role],
            "parts": [_upstream_part(part) for part in message.content],
        }
        for message in messages
    ]
    return UpstreamRequest(
        model=resolve_model(model, default_model),
        body={
            "contents": contents,
            "generationConfig": {"maxOutputTokens": max_output_tokens},
        },
    )
