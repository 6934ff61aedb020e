"""Value objects for Persona Relay.

This module defines immutable value objects describing what is being asked
of an AI backend and what the target model can accept. Value objects have no
identity and are compared by value.

Design Principles:
    - Immutability: All value objects are frozen dataclasses (slots=True)
    - Validation: Business rules enforced in __post_init__ methods
    - Derivation: "Mutating" helpers (Content.add_text, ...) return new values

Key Value Objects:
    - ContentItem: One text, image reference, or audio reference
    - Content: Ordered, immutable sequence of content items
    - ModelCapabilities / Model: What a vendor model accepts
    - RequestId: Process-generated unique request identifier
    - UserId / PersonalityId: Opaque identifiers of collaborators' records
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from persona_relay.domain.exceptions import InvalidContentError, InvalidModelError

ContentType = Literal["text", "image_url", "audio_url"]

TEMPERATURE_MAX = 2.0
"""Maximum allowed sampling temperature (inclusive)."""

_MEDIA_ALIASES = {"image": "image_url", "audio": "audio_url"}


@dataclass(slots=True, frozen=True)
class ContentItem:
    """A single piece of content: text, an image reference, or an audio reference.

    Attributes:
        type: Item kind. One of "text", "image_url", "audio_url".
        text: Text payload. Required (may be empty) for text items, None otherwise.
        url: Media URL. Required for image/audio items, None for text items.

    Raises:
        InvalidContentError: If the kind is unknown or the payload does not
            match the kind.
    """

    type: ContentType
    text: str | None = None
    url: str | None = None

    def __post_init__(self) -> None:
        """Validate the item shape for its kind."""
        match self.type:
            case "text":
                if not isinstance(self.text, str):
                    raise InvalidContentError("Text content item requires a text string")
                if self.url is not None:
                    raise InvalidContentError("Text content item cannot carry a url")
            case "image_url" | "audio_url":
                if not isinstance(self.url, str) or not self.url.strip():
                    raise InvalidContentError(f"{self.type} content item requires a url")
                if self.text is not None:
                    raise InvalidContentError(f"{self.type} content item cannot carry text")
            case _:
                raise InvalidContentError(f"Unknown content item type: {self.type!r}")

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> ContentItem:
        """Build an item from its wire shape.

        Accepts ``{"type": "text", "text": ...}``,
        ``{"type": "image_url", "image_url": {"url": ...}}`` and the audio
        equivalent. The short forms ``{"type": "image", "url": ...}`` and
        ``{"type": "audio", "url": ...}`` are accepted as well.

        Raises:
            InvalidContentError: If ``data`` is not a mapping or has an
                unknown kind or malformed payload.
        """
        if not isinstance(data, Mapping):
            raise InvalidContentError(f"Content item must be a mapping, got {type(data).__name__}")

        kind = data.get("type")
        kind = _MEDIA_ALIASES.get(kind, kind)
        match kind:
            case "text":
                return cls(type="text", text=data.get("text"))
            case "image_url" | "audio_url":
                ref = data.get(kind)
                url = ref.get("url") if isinstance(ref, Mapping) else data.get("url")
                return cls(type=kind, url=url)
            case _:
                raise InvalidContentError(f"Unknown content item type: {kind!r}")

    def to_json(self) -> dict[str, Any]:
        if self.type == "text":
            return {"type": "text", "text": self.text}
        return {"type": self.type, self.type: {"url": self.url}}


@dataclass(slots=True, frozen=True, init=False)
class Content:
    """Ordered, immutable sequence of content items.

    Construct from content items or their wire dicts; every element is
    validated. A Content never changes after construction: ``add_text``,
    ``add_image`` and ``add_audio`` return new instances.

    Attributes:
        items: Tuple of validated ContentItem values.

    Raises:
        InvalidContentError: If the sequence is empty, is a bare string, or
            contains an invalid item.
    """

    items: tuple[ContentItem, ...]

    def __init__(self, items: Iterable[ContentItem | Mapping[str, Any]]) -> None:
        if isinstance(items, (str, bytes)) or not isinstance(items, Iterable):
            raise InvalidContentError("Content must be built from a sequence of items")
        normalized = tuple(
            item if isinstance(item, ContentItem) else ContentItem.from_json(item)
            for item in items
        )
        if not normalized:
            raise InvalidContentError("Content must contain at least one item")
        object.__setattr__(self, "items", normalized)

    @classmethod
    def from_text(cls, text: str) -> Content:
        return cls([ContentItem(type="text", text=text)])

    def add_text(self, text: str) -> Content:
        return Content([*self.items, ContentItem(type="text", text=text)])

    def add_image(self, url: str) -> Content:
        return Content([*self.items, ContentItem(type="image_url", url=url)])

    def add_audio(self, url: str) -> Content:
        return Content([*self.items, ContentItem(type="audio_url", url=url)])

    def get_text(self) -> str:
        """Join every text item with a single space."""
        return " ".join(item.text for item in self.items if item.type == "text")

    def has_images(self) -> bool:
        return any(item.type == "image_url" for item in self.items)

    def has_audio(self) -> bool:
        return any(item.type == "audio_url" for item in self.items)

    def is_empty(self) -> bool:
        """True when there is no media and all text is blank."""
        return not self.has_images() and not self.has_audio() and not self.get_text().strip()

    def to_json(self) -> list[dict[str, Any]]:
        return [item.to_json() for item in self.items]

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


@dataclass(slots=True, frozen=True)
class ModelCapabilities:
    """What a model accepts and how it should sample.

    Attributes:
        supports_images: Whether image items may be sent. Default: False.
        supports_audio: Whether audio items may be sent. Default: False.
        max_tokens: Maximum tokens to generate. Must be >= 1. Default: 4096.
        temperature: Sampling temperature in [0.0, 2.0]. Default: 0.7.

    Raises:
        InvalidModelError: If a field has the wrong type, or max_tokens or
            temperature is out of range.
    """

    supports_images: bool = False
    supports_audio: bool = False
    max_tokens: int = 4096
    temperature: float = 0.7

    def __post_init__(self) -> None:
        if not isinstance(self.supports_images, bool) or not isinstance(self.supports_audio, bool):
            raise InvalidModelError("supports_images and supports_audio must be booleans")
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int):
            raise InvalidModelError(f"max_tokens must be an integer, got {self.max_tokens!r}")
        if isinstance(self.temperature, bool) or not isinstance(self.temperature, int | float):
            raise InvalidModelError(f"temperature must be a number, got {self.temperature!r}")
        if self.max_tokens < 1:
            raise InvalidModelError(f"max_tokens must be >= 1, got {self.max_tokens}")
        if not 0.0 <= self.temperature <= TEMPERATURE_MAX:
            raise InvalidModelError(
                f"temperature must be between 0.0 and {TEMPERATURE_MAX}, got {self.temperature}"
            )


@dataclass(slots=True, frozen=True)
class Model:
    """Immutable descriptor of a target model.

    Attributes:
        name: Human-facing model name. Must not be empty.
        path: Vendor model identifier sent on the wire. Must not be empty.
        capabilities: Accepted modalities and sampling settings.

    Raises:
        InvalidModelError: If name or path is not a non-empty string, or
            capabilities is not a ModelCapabilities.
    """

    name: str
    path: str
    capabilities: ModelCapabilities = field(default_factory=ModelCapabilities)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise InvalidModelError("Model name must be a non-empty string")
        if not isinstance(self.path, str) or not self.path.strip():
            raise InvalidModelError("Model path must be a non-empty string")
        if not isinstance(self.capabilities, ModelCapabilities):
            raise InvalidModelError("Model capabilities must be a ModelCapabilities instance")

    @classmethod
    def create_default(cls, path: str = "default") -> Model:
        return cls(name="default", path=path)

    def is_compatible_with(self, content: Content) -> bool:
        """Check that every item in ``content`` is a modality this model accepts."""
        if content.has_images() and not self.capabilities.supports_images:
            return False
        if content.has_audio() and not self.capabilities.supports_audio:
            return False
        return True

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "capabilities": {
                "supports_images": self.capabilities.supports_images,
                "supports_audio": self.capabilities.supports_audio,
                "max_tokens": self.capabilities.max_tokens,
                "temperature": self.capabilities.temperature,
            },
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Model:
        return cls(
            name=data["name"],
            path=data["path"],
            capabilities=ModelCapabilities(**data.get("capabilities", {})),
        )


@dataclass(slots=True, frozen=True)
class RequestId:
    """Opaque unique identifier of one logical AI request.

    Generated as ``air_<unix-ms>_<random hex>``. Never parsed by callers.
    """

    value: str

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise ValueError("Request id cannot be empty")

    @classmethod
    def create(cls) -> RequestId:
        return cls(f"air_{time.time_ns() // 1_000_000}_{secrets.token_hex(6)}")

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True, frozen=True)
class UserId:
    """Identifier of the requesting chat user (owned by the user layer)."""

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not self.value.strip():
            raise ValueError("User id cannot be empty")

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True, frozen=True)
class PersonalityId:
    """Identifier of the target personality (owned by the personality layer)."""

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not self.value.strip():
            raise ValueError("Personality id cannot be empty")

    def __str__(self) -> str:
        return self.value


__all__ = [
    "Content",
    "ContentItem",
    "ContentType",
    "Model",
    "ModelCapabilities",
    "PersonalityId",
    "RequestId",
    "UserId",
]
