"""Media provider protocols and types for story enrichment.

LangChain has no image or speech model abstraction that fits here, so we
define thin protocols of our own:

- ``ImageProvider``: text prompt to image bytes (participant portraits).
- ``SpeechSynthesizer``: text to audio bytes (story narration).
- ``MediaStorage``: persists bytes and returns a URL for the story document.

Implementations:
    - PlaceholderImageProvider / SilentSpeechSynthesizer (placeholder_media.py)
    - A1111ImageProvider / OpenAISpeechSynthesizer (http_media.py)
    - LocalMediaStorage (below)
"""

from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from storyfriends.observability.logging import get_logger
from storyfriends.providers.base import ProviderConfigError

log = get_logger(__name__)

# mimetypes tables differ between platforms for these
_EXTENSIONS: dict[str, str] = {
    "audio/wav": ".wav",
    "audio/mpeg": ".mp3",
    "image/png": ".png",
}


@dataclass(frozen=True)
class ImageResult:
    """Result of an image generation call.

    Attributes:
        image_data: Raw image bytes.
        content_type: MIME type (e.g., ``image/png``).
        provider_metadata: Provider-specific metadata.
    """

    image_data: bytes
    content_type: str = "image/png"
    provider_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AudioResult:
    """Result of a speech synthesis call."""

    audio_data: bytes
    content_type: str = "audio/wav"
    duration_seconds: float | None = None
    provider_metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ImageProvider(Protocol):
    """Protocol for image generation backends."""

    async def generate(self, prompt: str, *, aspect_ratio: str = "1:1") -> ImageResult:
        """Generate an image from a text prompt.

        Raises:
            MediaProviderError: If generation fails.
        """
        ...


@runtime_checkable
class SpeechSynthesizer(Protocol):
    """Protocol for text-to-speech backends."""

    async def synthesize(self, text: str, *, voice: str | None = None) -> AudioResult:
        """Synthesize narration audio for ``text``.

        Raises:
            MediaProviderError: If synthesis fails.
        """
        ...


class MediaStorage(Protocol):
    """Persists generated media and returns a URL for it."""

    async def save(self, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``path`` and return its URL."""
        ...


class LocalMediaStorage:
    """Media storage writing files under a root directory.

    URLs are ``file://`` URIs unless ``base_url`` is set, in which case they
    are ``<base_url>/<path>``.
    """

    def __init__(self, root: Path, base_url: str | None = None) -> None:
        self.root = root
        self.base_url = base_url.rstrip("/") if base_url else None

    async def save(self, path: str, data: bytes, content_type: str) -> str:
        target = self.root / path
        if not target.suffix:
            extension = _EXTENSIONS.get(content_type) or mimetypes.guess_extension(content_type)
            target = target.with_suffix(extension or ".bin")
        await asyncio.to_thread(self._write, target, data)
        relative = target.relative_to(self.root).as_posix()
        log.debug("media_saved", path=relative, size_bytes=len(data))
        if self.base_url:
            return f"{self.base_url}/{relative}"
        return target.resolve().as_uri()

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)


def create_image_provider(spec: str) -> ImageProvider:
    """Create an image provider from a spec string.

    ``placeholder`` or ``a1111[/checkpoint]``.

    Raises:
        ProviderConfigError: If the provider name is unknown.
    """
    name, _, model = spec.partition("/")
    name = name.strip().lower()
    if name == "placeholder":
        from storyfriends.providers.placeholder_media import PlaceholderImageProvider

        return PlaceholderImageProvider()
    if name == "a1111":
        from storyfriends.providers.http_media import A1111ImageProvider

        return A1111ImageProvider(model=model or None)
    raise ProviderConfigError(name, f"Unknown image provider: {spec}")


def create_speech_synthesizer(spec: str) -> SpeechSynthesizer:
    """Create a speech synthesizer from a spec string.

    ``placeholder`` or ``openai[/model]``.

    Raises:
        ProviderConfigError: If the provider name is unknown.
    """
    name, _, model = spec.partition("/")
    name = name.strip().lower()
    if name == "placeholder":
        from storyfriends.providers.placeholder_media import SilentSpeechSynthesizer

        return SilentSpeechSynthesizer()
    if name == "openai":
        from storyfriends.providers.http_media import OpenAISpeechSynthesizer

        return OpenAISpeechSynthesizer(model=model or None)
    raise ProviderConfigError(name, f"Unknown speech provider: {spec}")
