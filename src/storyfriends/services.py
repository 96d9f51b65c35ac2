"""Service wiring.

``build_services`` turns ``WorkflowSettings`` into the object graph shared by
the HTTP app and the CLI: one document store, one trace store, one AI
invoker, the generator configuration, and the workflow components on top.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from storyfriends.ai.invoker import AIInvoker
from storyfriends.config import (
    GeneratorConfig,
    WorkflowSettings,
    load_generator_config,
    load_generator_config_from_store,
)
from storyfriends.observability.ai_trace import DocumentTraceStore, JSONLTraceStore
from storyfriends.observability.logging import get_logger
from storyfriends.providers.factory import create_chat_model_from_string
from storyfriends.providers.media import (
    LocalMediaStorage,
    create_image_provider,
    create_speech_synthesizer,
)
from storyfriends.store.memory import MemoryDocumentStore
from storyfriends.store.sqlite import SqliteDocumentStore
from storyfriends.workflow.compile_service import CompileService
from storyfriends.workflow.compiler import StoryCompiler
from storyfriends.workflow.enrichment import AvatarJob, NarrationJob, TitleJob
from storyfriends.workflow.entities import EntityDirectory
from storyfriends.workflow.lock import CompileLockManager
from storyfriends.workflow.state_machine import PhaseStateMachine

if TYPE_CHECKING:
    from storyfriends.ai.invoker import ModelFactory
    from storyfriends.observability.ai_trace import AITraceStore
    from storyfriends.providers.media import ImageProvider, MediaStorage, SpeechSynthesizer
    from storyfriends.store.base import DocumentStore
    from storyfriends.workflow.fanout import EnrichmentJob

log = get_logger(__name__)

MEMORY_STORE_PATH = ":memory:"


@dataclass
class StoryServices:
    """Everything a request handler needs."""

    settings: WorkflowSettings
    store: DocumentStore
    trace_store: AITraceStore
    invoker: AIInvoker
    config: GeneratorConfig
    entities: EntityDirectory
    compile_service: CompileService
    state_machine: PhaseStateMachine
    image_provider: ImageProvider
    speech_synthesizer: SpeechSynthesizer
    media_storage: MediaStorage

    def enrichment_jobs(self) -> list[EnrichmentJob]:
        """Jobs scheduled after a fresh compile."""
        return [
            NarrationJob(self.store, self.entities, self.speech_synthesizer, self.media_storage),
            AvatarJob(self.store, self.entities, self.image_provider, self.media_storage),
            TitleJob(self.store, self.invoker, self.config),
        ]

    def close(self) -> None:
        if isinstance(self.store, SqliteDocumentStore):
            self.store.close()


def open_store(settings: WorkflowSettings) -> DocumentStore:
    if settings.store_path == MEMORY_STORE_PATH:
        return MemoryDocumentStore()
    return SqliteDocumentStore(settings.store_path)


async def build_services(
    settings: WorkflowSettings,
    *,
    store: DocumentStore | None = None,
    trace_store: AITraceStore | None = None,
    model_factory: ModelFactory = create_chat_model_from_string,
    config: GeneratorConfig | None = None,
    image_provider: ImageProvider | None = None,
    speech_synthesizer: SpeechSynthesizer | None = None,
    media_storage: MediaStorage | None = None,
) -> StoryServices:
    """Assemble the workflow components from settings.

    Keyword arguments replace the component that would otherwise be built
    from settings; tests use them to inject fakes.

    Raises:
        ConfigError: If the generator YAML cannot be parsed.
        ProviderConfigError: If a media provider spec is unknown.
    """
    if store is None:
        store = open_store(settings)
    if trace_store is None:
        if settings.trace_to_store:
            trace_store = DocumentTraceStore(store)
        else:
            trace_store = JSONLTraceStore(settings.trace_dir)

    if config is None:
        if settings.generator_path is not None:
            config = load_generator_config(settings.generator_path)
        else:
            config = await load_generator_config_from_store(store, settings.generator_id)

    invoker = AIInvoker(
        trace_store, model_factory=model_factory, max_chars=settings.trace_max_chars
    )
    entities = EntityDirectory(store)
    lock = CompileLockManager(store, lock_timeout_seconds=settings.lock_timeout_seconds)
    compiler = StoryCompiler(store, invoker, config, entities)
    compile_service = CompileService(
        store, lock, compiler, compile_timeout_seconds=settings.compile_timeout_seconds
    )
    state_machine = PhaseStateMachine(
        store, invoker, config, compile_service, entities, settings=settings
    )

    services = StoryServices(
        settings=settings,
        store=store,
        trace_store=trace_store,
        invoker=invoker,
        config=config,
        entities=entities,
        compile_service=compile_service,
        state_machine=state_machine,
        image_provider=image_provider or create_image_provider(settings.image_provider),
        speech_synthesizer=speech_synthesizer
        or create_speech_synthesizer(settings.speech_provider),
        media_storage=media_storage
        or LocalMediaStorage(settings.media_dir, base_url=settings.media_base_url),
    )
    log.debug(
        "services_built",
        store=type(store).__name__,
        trace_store=type(trace_store).__name__,
        image_provider=settings.image_provider,
        speech_provider=settings.speech_provider,
    )
    return services
