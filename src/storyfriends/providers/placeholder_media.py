"""Placeholder media providers for development and tests.

Generate minimal solid-color PNGs and silent WAV files with no external
dependencies. Zero cost, instant generation.
"""

from __future__ import annotations

import hashlib
import io
import struct
import wave
import zlib

from storyfriends.providers.media import AudioResult, ImageResult

_ASPECT_RATIO_TO_SIZE: dict[str, tuple[int, int]] = {
    "1:1": (256, 256),
    "16:9": (640, 360),
    "3:2": (480, 320),
}

_PALETTE: list[tuple[int, int, int]] = [
    (242, 166, 90),  # apricot
    (126, 200, 227),  # sky
    (168, 214, 140),  # meadow
    (244, 143, 177),  # bubblegum
    (206, 147, 216),  # lilac
]

# Roughly 15 spoken characters per second
_CHARS_PER_SECOND = 15
_SAMPLE_RATE = 8000
_MAX_SECONDS = 10.0


def _make_png(width: int, height: int, r: int, g: int, b: int) -> bytes:
    """Generate a minimal solid-color RGB PNG."""

    def _chunk(chunk_type: bytes, data: bytes) -> bytes:
        payload = chunk_type + data
        crc = struct.pack(">I", zlib.crc32(payload) & 0xFFFFFFFF)
        return struct.pack(">I", len(data)) + payload + crc

    sig = b"\x89PNG\r\n\x1a\n"
    ihdr = _chunk(b"IHDR", struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0))
    row = bytes([0]) + bytes([r, g, b]) * width
    idat = _chunk(b"IDAT", zlib.compress(row * height))
    return sig + ihdr + idat + _chunk(b"IEND", b"")


def _make_silent_wav(seconds: float) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(_SAMPLE_RATE)
        wav.writeframes(b"\x00\x00" * int(_SAMPLE_RATE * seconds))
    return buffer.getvalue()


class PlaceholderImageProvider:
    """Image provider producing solid-color PNGs.

    The color is chosen deterministically from the prompt hash.
    """

    async def generate(self, prompt: str, *, aspect_ratio: str = "1:1") -> ImageResult:
        width, height = _ASPECT_RATIO_TO_SIZE.get(aspect_ratio, _ASPECT_RATIO_TO_SIZE["1:1"])
        idx = int(hashlib.md5(prompt.encode()).hexdigest(), 16) % len(_PALETTE)
        r, g, b = _PALETTE[idx]
        return ImageResult(
            image_data=_make_png(width, height, r, g, b),
            content_type="image/png",
            provider_metadata={
                "quality": "placeholder",
                "size": f"{width}x{height}",
                "prompt_preview": prompt[:80],
            },
        )


class SilentSpeechSynthesizer:
    """Speech synthesizer producing silence sized to the text length."""

    async def synthesize(self, text: str, *, voice: str | None = None) -> AudioResult:
        seconds = min(_MAX_SECONDS, max(1.0, len(text) / _CHARS_PER_SECOND))
        return AudioResult(
            audio_data=_make_silent_wav(seconds),
            content_type="audio/wav",
            duration_seconds=seconds,
            provider_metadata={"quality": "placeholder", "voice": voice},
        )
