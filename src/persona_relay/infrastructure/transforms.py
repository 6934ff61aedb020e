"""Provider wire-format transforms (the anti-corruption layer).

Each provider is described by a ``TransformPair``: a pure function turning a
domain ``Request`` into a ``WireRequest`` and a pure function turning the
provider's decoded JSON back into domain ``Content``. The HTTP adapter only
ever calls these two functions, so adding a provider never touches the
adapter, the deduplicator or the aggregate.

Providers:
    - generic: Chat-completions style request, shape-detected response
    - openai: OpenAI chat-completions request and response
    - anthropic: Anthropic messages request and response
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from persona_relay.domain.value_objects import Content, ContentItem

if TYPE_CHECKING:
    from persona_relay.domain.request import Request

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_ENDPOINT = "/v1/chat/completions"
MESSAGES_ENDPOINT = "/v1/messages"


@dataclass(slots=True, frozen=True)
class WireRequest:
    """Provider-specific request ready to be POSTed.

    Attributes:
        endpoint: Path appended to the adapter's base URL.
        payload: JSON body.
        headers: Extra headers for this request only.
    """

    endpoint: str
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


RequestTransform = Callable[["Request"], WireRequest]
ResponseTransform = Callable[[Any], Content]


@dataclass(slots=True, frozen=True)
class TransformPair:
    request: RequestTransform
    response: ResponseTransform


def _personality_prompt(request: Request) -> str | None:
    if request.personality_id is None:
        return None
    return f"You are personality {request.personality_id}."


def _referenced_text(request: Request) -> str | None:
    referenced = request.referenced_content
    if referenced is None or not referenced.get_text().strip():
        return None
    return f"[Referenced message]: {referenced.get_text()}"


def _openai_part(item: ContentItem) -> dict[str, Any] | None:
    match item.type:
        case "text":
            return {"type": "text", "text": item.text}
        case "image_url":
            return {"type": "image_url", "image_url": {"url": item.url}}
        case _:
            logger.warning("Audio content is not supported by chat-completions payloads")
            return None


def _chat_messages(request: Request) -> list[dict[str, Any]]:
    """System message, referenced message, then one user message per item."""
    messages: list[dict[str, Any]] = []
    system = _personality_prompt(request)
    if system:
        messages.append({"role": "system", "content": system})
    referenced = _referenced_text(request)
    if referenced:
        messages.append({"role": "user", "content": referenced})
    for item in request.content or ():
        if item.type == "text":
            messages.append({"role": "user", "content": item.text})
            continue
        part = _openai_part(item)
        if part is not None:
            messages.append({"role": "user", "content": [part]})
    return messages


# ============================================================================
# Generic
# ============================================================================


def generic_request_transform(request: Request) -> WireRequest:
    """Default chat-completions request used when no provider is configured."""
    model = request.model
    return WireRequest(
        endpoint=CHAT_COMPLETIONS_ENDPOINT,
        payload={
            "model": model.path if model else "default-model",
            "messages": _chat_messages(request),
            "temperature": model.capabilities.temperature if model else None,
            "max_tokens": model.capabilities.max_tokens if model else None,
            "user": str(request.user_id) if request.user_id else None,
            "metadata": {
                "request_id": request.id,
                "conversation_id": request.conversation_id,
            },
        },
    )


def _text_blocks(blocks: list[Any], error: str) -> str:
    """Join the text of every ``{"type": "text"}`` block; other blocks are skipped."""
    texts: list[str] = []
    for block in blocks:
        match block:
            case {"type": "text", "text": str(text)}:
                texts.append(text)
            case {"type": "text", "text": _}:
                raise ValueError(error)
            case {"type": "text"}:
                texts.append("")
            case Mapping():
                pass
            case _:
                raise ValueError(error)
    return "\n".join(texts)


def _message_text(content: Any, error: str) -> str | None:
    """Text of a chat message ``content``: a string, a list of parts, or None."""
    match content:
        case None | str():
            return content
        case list(parts):
            return _text_blocks(parts, error)
        case _:
            raise ValueError(error)


def generic_response_transform(data: Any) -> Content:
    """Detect the response shape and extract its text.

    Recognized shapes, in order: ``choices`` array, ``content`` block array,
    flat ``text``/``response``/``message`` field, ``content`` string, bare
    string.

    Raises:
        ValueError: If none of the shapes matches, or a matched shape holds
            values of the wrong type.
    """
    unsupported = "Unsupported response format"
    match data:
        case {"choices": [Mapping() as first, *_]}:
            message = first.get("message") or {}
            if not isinstance(message, Mapping):
                raise ValueError(unsupported)
            text = (
                _message_text(message.get("content"), unsupported)
                or _message_text(first.get("text"), unsupported)
                or ""
            )
        case {"content": list(blocks)}:
            text = _text_blocks(blocks, unsupported)
        case {"text": str(text)} | {"response": str(text)} | {"message": str(text)}:
            pass
        case {"content": str(text)}:
            pass
        case str(text):
            pass
        case _:
            raise ValueError(unsupported)
    return Content.from_text(text)


# ============================================================================
# OpenAI-compatible
# ============================================================================


def openai_request_transform(request: Request) -> WireRequest:
    model = request.model
    payload: dict[str, Any] = {
        "model": model.path if model else "default-model",
        "messages": _chat_messages(request),
    }
    if model:
        payload["temperature"] = model.capabilities.temperature
        payload["max_tokens"] = model.capabilities.max_tokens
    if request.user_id:
        payload["user"] = str(request.user_id)
    return WireRequest(endpoint=CHAT_COMPLETIONS_ENDPOINT, payload=payload)


def openai_response_transform(data: Any) -> Content:
    """Parse the first choice's message content."""
    unsupported = "Unsupported OpenAI response format"
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ValueError(unsupported) from exc
    return Content.from_text(_message_text(content, unsupported) or "")


# ============================================================================
# Anthropic-compatible
# ============================================================================


def anthropic_request_transform(request: Request) -> WireRequest:
    """Personality goes in ``system``; content becomes one user message."""
    model = request.model
    blocks: list[dict[str, Any]] = []
    referenced = _referenced_text(request)
    if referenced:
        blocks.append({"type": "text", "text": referenced})
    for item in request.content or ():
        match item.type:
            case "text":
                blocks.append({"type": "text", "text": item.text})
            case "image_url":
                blocks.append({"type": "image", "source": {"type": "url", "url": item.url}})
            case _:
                logger.warning("Audio content is not supported by Anthropic payloads")

    payload: dict[str, Any] = {
        "model": model.path if model else "default-model",
        "messages": [{"role": "user", "content": blocks}],
        "max_tokens": model.capabilities.max_tokens if model else 4096,
    }
    system = _personality_prompt(request)
    if system:
        payload["system"] = system
    if model:
        payload["temperature"] = model.capabilities.temperature
    return WireRequest(endpoint=MESSAGES_ENDPOINT, payload=payload)


def anthropic_response_transform(data: Any) -> Content:
    """Concatenate every text block of the response."""
    unsupported = "Unsupported Anthropic response format"
    blocks = data.get("content") if isinstance(data, Mapping) else None
    if not isinstance(blocks, list):
        raise ValueError(unsupported)
    return Content.from_text(_text_blocks(blocks, unsupported))


GENERIC = TransformPair(generic_request_transform, generic_response_transform)
OPENAI = TransformPair(openai_request_transform, openai_response_transform)
ANTHROPIC = TransformPair(anthropic_request_transform, anthropic_response_transform)


# ============================================================================
# Error-pattern detection
# ============================================================================

_HIGH_CONFIDENCE_ERROR_PATTERNS = (
    "NoneType",
    "AttributeError",
    "TypeError",
    "ValueError",
    "KeyError",
    "IndexError",
    "ModuleNotFoundError",
    "ImportError",
)
_ERROR_LINE = re.compile(r"^Error:", re.MULTILINE)
_TRACEBACK_CONTEXT = ("line", "File", "stack")
_EXCEPTION_CONTEXT = ("raised", "caught", "thrown", "threw")


def is_error_response(text: str | None) -> bool:
    """Detect backend error text returned with a 2xx status.

    Some backends answer failures with a 200 and the error text as the
    completion. Empty text counts as an error.
    """
    if not text:
        return True
    if any(pattern in text for pattern in _HIGH_CONFIDENCE_ERROR_PATTERNS):
        return True
    if _ERROR_LINE.search(text):
        return True
    if "Traceback" in text and any(word in text for word in _TRACEBACK_CONTEXT):
        return True
    return "Exception" in text and any(word in text for word in _EXCEPTION_CONTEXT)


__all__ = [
    "ANTHROPIC",
    "GENERIC",
    "OPENAI",
    "RequestTransform",
    "ResponseTransform",
    "TransformPair",
    "WireRequest",
    "anthropic_request_transform",
    "anthropic_response_transform",
    "generic_request_transform",
    "generic_response_transform",
    "is_error_response",
    "openai_request_transform",
    "openai_response_transform",
]
