"""HTTP media providers.

- ``A1111ImageProvider``: Automatic1111 Stable Diffusion WebUI
  (``/sdapi/v1/txt2img``), host from ``A1111_HOST``.
- ``OpenAISpeechSynthesizer``: OpenAI speech endpoint (``/v1/audio/speech``),
  key from ``OPENAI_API_KEY``.
"""

from __future__ import annotations

import base64
import os
from typing import Any

import httpx

from storyfriends.observability.logging import get_logger
from storyfriends.providers.base import MediaProviderError, ProviderConfigError
from storyfriends.providers.media import AudioResult, ImageResult

log = get_logger(__name__)

_IMAGE_TIMEOUT = 180.0
_SPEECH_TIMEOUT = 120.0

_A1111_SIZES: dict[str, tuple[int, int]] = {
    "1:1": (768, 768),
    "16:9": (1024, 576),
    "3:2": (768, 512),
}

_NEGATIVE_PROMPT = "scary, violent, text, watermark, blurry, deformed"


class A1111ImageProvider:
    """Image provider using an Automatic1111 WebUI.

    Args:
        model: Optional SD checkpoint override.
        host: WebUI base URL. Falls back to ``A1111_HOST``.
        client: Optional shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        model: str | None = None,
        host: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        resolved = host or os.getenv("A1111_HOST")
        if not resolved:
            raise ProviderConfigError("a1111", "A1111_HOST not configured")
        self._host = resolved.rstrip("/")
        self._model = model
        self._client = client or httpx.AsyncClient(timeout=_IMAGE_TIMEOUT)

    async def generate(self, prompt: str, *, aspect_ratio: str = "1:1") -> ImageResult:
        width, height = _A1111_SIZES.get(aspect_ratio, _A1111_SIZES["1:1"])
        payload: dict[str, Any] = {
            "prompt": prompt,
            "negative_prompt": _NEGATIVE_PROMPT,
            "width": width,
            "height": height,
            "steps": 30,
            "cfg_scale": 7.0,
        }
        if self._model:
            payload["override_settings"] = {"sd_model_checkpoint": self._model}

        log.debug("a1111_generate_start", host=self._host, model=self._model)
        try:
            response = await self._client.post(f"{self._host}/sdapi/v1/txt2img", json=payload)
        except httpx.HTTPError as e:
            log.error("a1111_request_error", host=self._host, error=str(e))
            raise MediaProviderError("a1111", f"Request to {self._host} failed: {e}") from e

        if response.status_code != 200:
            body_preview = response.text[:200]
            log.error("a1111_http_error", status_code=response.status_code)
            raise MediaProviderError(
                "a1111", f"A1111 returned HTTP {response.status_code}: {body_preview}"
            )

        images = response.json().get("images")
        if not images:
            raise MediaProviderError("a1111", "A1111 response contained no images")

        return ImageResult(
            image_data=base64.b64decode(images[0]),
            content_type="image/png",
            provider_metadata={"model": self._model, "size": f"{width}x{height}"},
        )


class OpenAISpeechSynthesizer:
    """Speech synthesizer using the OpenAI audio API."""

    DEFAULT_MODEL = "gpt-4o-mini-tts"
    DEFAULT_VOICE = "nova"

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        key = api_key or os.getenv("OPENAI_API_KEY")
        if not key:
            raise ProviderConfigError("openai", "API key required. Set OPENAI_API_KEY.")
        self._api_key = key
        self._model = model or self.DEFAULT_MODEL
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=_SPEECH_TIMEOUT)

    async def synthesize(self, text: str, *, voice: str | None = None) -> AudioResult:
        payload = {
            "model": self._model,
            "input": text,
            "voice": voice or self.DEFAULT_VOICE,
            "response_format": "mp3",
        }
        try:
            response = await self._client.post(
                f"{self._base_url}/audio/speech",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            log.error("speech_request_error", provider="openai", error=str(e))
            raise MediaProviderError("openai", f"Speech request failed: {e}") from e

        if response.status_code != 200:
            log.error("speech_http_error", provider="openai", status_code=response.status_code)
            raise MediaProviderError(
                "openai", f"Speech API returned HTTP {response.status_code}: {response.text[:200]}"
            )

        return AudioResult(
            audio_data=response.content,
            content_type="audio/mpeg",
            provider_metadata={"model": self._model, "voice": payload["voice"]},
        )
