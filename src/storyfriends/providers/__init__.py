"""Model and media providers."""

from storyfriends.providers.base import MediaProviderError, ProviderConfigError, ProviderError
from storyfriends.providers.factory import (
    create_chat_model,
    create_chat_model_from_string,
    parse_model_string,
)
from storyfriends.providers.media import (
    AudioResult,
    ImageProvider,
    ImageResult,
    LocalMediaStorage,
    MediaStorage,
    SpeechSynthesizer,
    create_image_provider,
    create_speech_synthesizer,
)

__all__ = [
    "AudioResult",
    "ImageProvider",
    "ImageResult",
    "LocalMediaStorage",
    "MediaProviderError",
    "MediaStorage",
    "ProviderConfigError",
    "ProviderError",
    "SpeechSynthesizer",
    "create_chat_model",
    "create_chat_model_from_string",
    "create_image_provider",
    "create_speech_synthesizer",
    "parse_model_string",
]
