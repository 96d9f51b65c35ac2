"""Base exception types for model providers."""

from __future__ import annotations


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ProviderConfigError(ProviderError):
    """Raised when a provider is unknown or missing credentials."""


class MediaProviderError(ProviderError):
    """Raised when image or speech generation fails."""
