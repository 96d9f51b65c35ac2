"""Integration test configuration and fixtures.

Live tests run against a real LLM provider and are skipped when none is
configured. The mocked end-to-end tests always run.
"""

from __future__ import annotations

import os

import pytest
from dotenv import load_dotenv

# Load .env file at import time so provider availability checks work
load_dotenv()


def _ollama_available() -> bool:
    """Check if Ollama is configured and reachable."""
    host = os.getenv("OLLAMA_HOST")
    if not host:
        return False

    try:
        import httpx

        response = httpx.get(f"{host}/api/tags", timeout=5.0)
        return response.status_code == 200
    except (httpx.HTTPError, OSError):
        return False


@pytest.fixture
def live_model_string() -> str:
    """Model string for the first configured provider.

    Skipped if no provider is configured. Small models keep cost down.
    """
    if os.getenv("GOOGLE_API_KEY"):
        return "google/gemini-2.5-flash"
    if os.getenv("OPENAI_API_KEY"):
        return "openai/gpt-5-mini"
    if os.getenv("ANTHROPIC_API_KEY"):
        return "anthropic/claude-3-5-haiku-latest"
    if _ollama_available():
        return "ollama/qwen3:8b"
    pytest.skip("No LLM provider configured")
