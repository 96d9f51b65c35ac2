"""Workflow configuration.

Two layers:

- ``WorkflowSettings``: process-level settings read from ``SF_*`` environment
  variables (storage paths, lock and timeout windows, temperature limits).
- ``GeneratorConfig``: per-workflow prompt, model, and temperature overrides,
  loaded from a YAML file or a ``story_generators`` document. Resolution per
  prompt key is: per-prompt override, then workflow default, then the
  built-in fallback layer.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ruamel.yaml import YAML

from storyfriends import prompts
from storyfriends.observability.logging import get_logger

if TYPE_CHECKING:
    from storyfriends.store.base import DocumentStore

log = get_logger(__name__)

DEFAULT_MODEL = "google/gemini-2.5-pro"
GENERATORS_COLLECTION = "story_generators"
DEFAULT_GENERATOR_ID = "friends"


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or parsed."""

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"Invalid configuration in {source}: {message}")


class PromptKey(StrEnum):
    """Prompt slots a generator can override."""

    COMPANION_PROPOSAL = "companion_proposal"
    SCENARIO_GENERATION = "scenario_generation"
    SYNOPSIS_GENERATION = "synopsis_generation"
    STORY_GENERATION = "story_generation"
    TITLE_REFINEMENT = "title_refinement"


@dataclass(frozen=True)
class PromptSettings:
    """Fully resolved prompt, model, and temperature for one prompt key."""

    prompt: str
    model: str
    temperature: float


@dataclass(frozen=True)
class PromptOverride:
    """Optional per-prompt overrides; None means inherit."""

    prompt: str | None = None
    model: str | None = None
    temperature: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptOverride:
        temperature = data.get("temperature")
        return cls(
            prompt=data.get("prompt") or None,
            model=data.get("model") or None,
            temperature=float(temperature) if temperature is not None else None,
        )


def default_prompt_settings() -> dict[PromptKey, PromptSettings]:
    """Built-in fallback layer used when a generator sets nothing."""
    return {
        PromptKey.COMPANION_PROPOSAL: PromptSettings(
            prompts.COMPANION_PROPOSAL, DEFAULT_MODEL, 0.8
        ),
        # Higher for more inventive premises
        PromptKey.SCENARIO_GENERATION: PromptSettings(
            prompts.SCENARIO_GENERATION, DEFAULT_MODEL, 1.2
        ),
        PromptKey.SYNOPSIS_GENERATION: PromptSettings(
            prompts.SYNOPSIS_GENERATION, DEFAULT_MODEL, 0.9
        ),
        PromptKey.STORY_GENERATION: PromptSettings(prompts.STORY_GENERATION, DEFAULT_MODEL, 0.7),
        PromptKey.TITLE_REFINEMENT: PromptSettings(prompts.TITLE_REFINEMENT, DEFAULT_MODEL, 0.7),
    }


@dataclass
class GeneratorConfig:
    """Prompt/model/temperature configuration for the story workflow.

    Attributes:
        prompts: Per-prompt overrides.
        default_model: Workflow-wide model, used when a prompt sets none.
        default_temperature: Workflow-wide temperature, used when a prompt sets none.
        global_prefix: Text prepended to every prompt.
        fallback: Built-in settings used when neither layer above applies.
    """

    prompts: dict[PromptKey, PromptOverride] = field(default_factory=dict)
    default_model: str | None = None
    default_temperature: float | None = None
    global_prefix: str = ""
    fallback: dict[PromptKey, PromptSettings] = field(default_factory=default_prompt_settings)

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str = "<dict>") -> GeneratorConfig:
        """Create config from a dictionary.

        Args:
            data: Mapping with optional ``prompts``, ``default_model``,
                ``default_temperature`` and ``global_prefix`` keys.
            source: Where the data came from, for error messages.

        Returns:
            GeneratorConfig instance.

        Raises:
            ConfigError: If a value has the wrong type.
        """
        overrides: dict[PromptKey, PromptOverride] = {}
        raw_prompts = data.get("prompts") or {}
        if not isinstance(raw_prompts, dict):
            raise ConfigError(source, "'prompts' must be a mapping")

        for key, value in raw_prompts.items():
            try:
                prompt_key = PromptKey(key)
            except ValueError:
                log.warning("generator_prompt_key_unknown", key=key, source=source)
                continue
            if isinstance(value, str):
                overrides[prompt_key] = PromptOverride(prompt=value)
            elif isinstance(value, dict):
                try:
                    overrides[prompt_key] = PromptOverride.from_dict(value)
                except (TypeError, ValueError) as e:
                    raise ConfigError(source, f"prompts.{key}: {e}") from e
            else:
                raise ConfigError(source, f"prompts.{key} must be a string or mapping")

        default_temperature = data.get("default_temperature")
        try:
            temperature = float(default_temperature) if default_temperature is not None else None
        except (TypeError, ValueError) as e:
            raise ConfigError(source, f"default_temperature: {e}") from e

        return cls(
            prompts=overrides,
            default_model=data.get("default_model") or None,
            default_temperature=temperature,
            global_prefix=data.get("global_prefix") or "",
        )

    def resolve(self, key: PromptKey) -> PromptSettings:
        """Resolve prompt, model, and temperature for a prompt key.

        The global prefix is prepended to the resolved prompt text.
        """
        override = self.prompts.get(key, PromptOverride())
        fallback = self.fallback[key]
        prompt = override.prompt or fallback.prompt
        if self.global_prefix:
            prompt = f"{self.global_prefix.rstrip()}\n\n{prompt}"
        temperature = override.temperature
        if temperature is None:
            temperature = self.default_temperature
        if temperature is None:
            temperature = fallback.temperature
        return PromptSettings(
            prompt=prompt,
            model=override.model or self.default_model or fallback.model,
            temperature=temperature,
        )


def load_generator_config(path: Path) -> GeneratorConfig:
    """Load generator configuration from a YAML file.

    Args:
        path: YAML file path.

    Returns:
        GeneratorConfig. A missing file yields the defaults.

    Raises:
        ConfigError: If the file cannot be parsed.
    """
    if not path.exists():
        log.debug("generator_config_missing", path=str(path))
        return GeneratorConfig()

    yaml = YAML(typ="safe")
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.load(f)
    except Exception as e:
        raise ConfigError(str(path), str(e)) from e

    if data is None:
        return GeneratorConfig()
    if not isinstance(data, dict):
        raise ConfigError(str(path), "top level must be a mapping")
    return GeneratorConfig.from_dict(data, source=str(path))


async def load_generator_config_from_store(
    store: DocumentStore,
    generator_id: str = DEFAULT_GENERATOR_ID,
) -> GeneratorConfig:
    """Load generator configuration from the ``story_generators`` collection.

    A missing document yields the defaults.
    """
    data = await store.get(GENERATORS_COLLECTION, generator_id)
    if data is None:
        log.debug("generator_config_missing", generator_id=generator_id)
        return GeneratorConfig()
    return GeneratorConfig.from_dict(data, source=f"{GENERATORS_COLLECTION}/{generator_id}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(name, f"expected a number, got {raw!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class WorkflowSettings:
    """Process-level settings.

    Attributes:
        store_path: SQLite database path, or ``":memory:"`` for an in-process store.
        trace_dir: Directory for ``ai_calls.jsonl`` and debug logs.
        trace_to_store: Record AI traces in the ``ai_flow_logs`` collection
            instead of the JSONL file.
        media_dir: Directory for generated audio and images.
        generator_id: ``story_generators`` document to load.
        generator_path: Optional YAML file that takes precedence over the store.
        lock_timeout_seconds: Compile lock staleness window.
        compile_timeout_seconds: Advisory compile duration limit (logged only).
        synopsis_temperature_boost: Added to the synopsis temperature for "more" requests.
        max_temperature: Upper bound for any boosted temperature.
        trace_max_chars: Truncation budget for traced prompt/response text.
        image_provider: Image provider spec (``placeholder`` or ``a1111[/checkpoint]``).
        speech_provider: Speech provider spec (``placeholder`` or ``openai[/model]``).
        media_base_url: Public URL prefix for stored media; ``file://`` URIs when unset.
    """

    store_path: str = ".storyfriends/store.db"
    trace_dir: Path = field(default_factory=lambda: Path(".storyfriends/logs"))
    trace_to_store: bool = False
    media_dir: Path = field(default_factory=lambda: Path(".storyfriends/media"))
    generator_id: str = DEFAULT_GENERATOR_ID
    generator_path: Path | None = None
    lock_timeout_seconds: float = 120.0
    compile_timeout_seconds: float = 180.0
    synopsis_temperature_boost: float = 0.2
    max_temperature: float = 2.0
    trace_max_chars: int = 10_000
    image_provider: str = "placeholder"
    speech_provider: str = "placeholder"
    media_base_url: str | None = None

    @classmethod
    def from_env(cls) -> WorkflowSettings:
        """Build settings from ``SF_*`` environment variables."""
        generator_path = os.getenv("SF_GENERATOR_PATH")
        return cls(
            store_path=os.getenv("SF_STORE_PATH") or cls.store_path,
            trace_dir=Path(os.getenv("SF_TRACE_DIR") or ".storyfriends/logs"),
            trace_to_store=_env_bool("SF_TRACE_TO_STORE", False),
            media_dir=Path(os.getenv("SF_MEDIA_DIR") or ".storyfriends/media"),
            generator_id=os.getenv("SF_GENERATOR_ID") or DEFAULT_GENERATOR_ID,
            generator_path=Path(generator_path) if generator_path else None,
            lock_timeout_seconds=_env_float("SF_LOCK_TIMEOUT", 120.0),
            compile_timeout_seconds=_env_float("SF_COMPILE_TIMEOUT", 180.0),
            synopsis_temperature_boost=_env_float("SF_SYNOPSIS_TEMPERATURE_BOOST", 0.2),
            max_temperature=_env_float("SF_MAX_TEMPERATURE", 2.0),
            trace_max_chars=int(_env_float("SF_TRACE_MAX_CHARS", 10_000)),
            image_provider=os.getenv("SF_IMAGE_PROVIDER") or "placeholder",
            speech_provider=os.getenv("SF_SPEECH_PROVIDER") or "placeholder",
            media_base_url=os.getenv("SF_MEDIA_BASE_URL") or None,
        )
