"""Factory for LangChain chat models.

Uses LangChain's init_chat_model abstraction for unified provider
instantiation. Model strings take the form ``provider/model``
(``google/gemini-2.5-pro``, ``openai/gpt-5-mini``); credentials are resolved
from keyword arguments first and then from the provider's environment
variable.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from storyfriends.observability.logging import get_logger
from storyfriends.providers.base import ProviderConfigError, ProviderError

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

# Provider default models, used when a model string names only the provider
PROVIDER_DEFAULTS: dict[str, str] = {
    "openai": "gpt-5-mini",
    "anthropic": "claude-sonnet-4-20250514",
    "google": "gemini-2.5-flash",
    "ollama": "qwen3:8b",
}

_KNOWN_PROVIDERS = frozenset(PROVIDER_DEFAULTS)

_API_KEY_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}

_PACKAGES: dict[str, str] = {
    "ollama": "langchain-ollama",
    "openai": "langchain-openai",
    "anthropic": "langchain-anthropic",
    "google": "langchain-google-genai",
}


def _normalize_provider(provider_name: str) -> str:
    """Normalize provider name, resolving aliases (``gemini``, ``googleai``)."""
    name = provider_name.strip().lower()
    if name in ("gemini", "googleai", "google_genai"):
        return "google"
    return name


def parse_model_string(model_string: str) -> tuple[str, str]:
    """Split ``provider/model`` into its parts.

    A bare provider name resolves to that provider's default model.

    Raises:
        ProviderConfigError: If the provider is unknown.
    """
    provider_part, _, model = model_string.partition("/")
    provider = _normalize_provider(provider_part)
    if provider not in _KNOWN_PROVIDERS:
        raise ProviderConfigError(provider, f"Unknown provider in model string '{model_string}'")
    return provider, model or PROVIDER_DEFAULTS[provider]


def _preprocess_provider_kwargs(provider: str, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Resolve provider-specific configuration (API keys, Ollama host).

    Raises:
        ProviderConfigError: If required configuration is missing.
    """
    kwargs = dict(kwargs)

    if provider == "ollama":
        host = kwargs.pop("host", None) or os.getenv("OLLAMA_HOST")
        if not host:
            log.error("provider_config_error", provider="ollama", missing="OLLAMA_HOST")
            raise ProviderConfigError(
                "ollama", "OLLAMA_HOST not configured. Set OLLAMA_HOST environment variable."
            )
        kwargs["base_url"] = host
        return kwargs

    env_var = _API_KEY_ENV[provider]
    api_key = kwargs.pop("api_key", None) or os.getenv(env_var)
    if not api_key:
        log.error("provider_config_error", provider=provider, missing=env_var)
        raise ProviderConfigError(
            provider, f"API key required. Set {env_var} environment variable."
        )
    kwargs["api_key"] = api_key
    return kwargs


def _map_provider_for_init(provider: str) -> str:
    # init_chat_model expects 'google_genai' not 'google'
    return "google_genai" if provider == "google" else provider


def create_chat_model(provider_name: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Create a LangChain chat model.

    Args:
        provider_name: Provider identifier (openai, anthropic, google, ollama).
        model: Model name.
        **kwargs: Provider options (temperature, api_key, host, ...).

    Returns:
        Configured BaseChatModel.

    Raises:
        ProviderError: If the provider is unknown, misconfigured, or its
            LangChain integration package is not installed.
    """
    provider = _normalize_provider(provider_name)
    if provider not in _KNOWN_PROVIDERS:
        log.error("provider_unknown", provider=provider)
        raise ProviderConfigError(provider, f"Unknown provider: {provider}")

    kwargs = _preprocess_provider_kwargs(provider, kwargs)

    from langchain.chat_models import init_chat_model

    try:
        chat_model: BaseChatModel = init_chat_model(
            model=model, model_provider=_map_provider_for_init(provider), **kwargs
        )
    except ImportError as e:
        package = _PACKAGES[provider]
        log.error("provider_import_error", provider=provider, package=package)
        raise ProviderError(provider, f"{package} not installed. Run: pip install {package}") from e

    log.info("chat_model_created", provider=provider, model=model)
    return chat_model


def create_chat_model_from_string(model_string: str, temperature: float) -> BaseChatModel:
    """Create a chat model from a ``provider/model`` string and temperature."""
    provider, model = parse_model_string(model_string)
    return create_chat_model(provider, model, temperature=temperature)
