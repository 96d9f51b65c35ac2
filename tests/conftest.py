"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from pydantic import BaseModel

from storyfriends.config import GeneratorConfig, WorkflowSettings
from storyfriends.errors import AIInvocationError
from storyfriends.observability.ai_trace import MemoryTraceStore
from storyfriends.providers.placeholder_media import (
    PlaceholderImageProvider,
    SilentSpeechSynthesizer,
)
from storyfriends.services import StoryServices
from storyfriends.store.memory import MemoryDocumentStore
from storyfriends.workflow.compile_service import CompileService
from storyfriends.workflow.compiler import StoryCompiler
from storyfriends.workflow.entities import EntityDirectory
from storyfriends.workflow.lock import CompileLockManager
from storyfriends.workflow.state_machine import PhaseStateMachine

PARENT_UID = "parent-1"
SESSION_ID = "session-1"

STORY_TEXT = (
    "Once upon a time, $$child-1$$ and $$char-7$$ built a little boat out of "
    "moonlight and sailed across the sleepy sky, waving to every star they passed."
)

DEFAULT_RESPONSES: dict[str, dict[str, Any]] = {
    "friends:companions": {"proposed_ids": ["child-1", "char-7"], "rationale": "Best friends"},
    "friends:scenarios": {
        "scenarios": [
            {"id": "A", "title": "Moon Boat", "description": "Sail a boat to the moon."},
            {"id": "B", "title": "Jungle Picnic", "description": "A picnic with parrots."},
            {"id": "C", "title": "Snow Castle", "description": "Build a castle of snow."},
        ]
    },
    "friends:synopses": {
        "synopses": [
            {"id": "A", "title": "Starlight Sail", "summary": "They sail to say hello."},
            {"id": "B", "title": "Lost Oar", "summary": "They lose an oar and find help."},
        ]
    },
    "friends:story": {
        "title": "$$child-1$$ and the Moon Boat",
        "mood": "magical",
        "text": STORY_TEXT,
    },
    "friends:title": {"title": '"The Moonlight Boat"'},
}


def seed_data() -> dict[str, dict[str, dict[str, Any]]]:
    """Children and characters for one family, plus strays that must be filtered."""
    return {
        "children": {
            "child-1": {
                "display_name": "Mia",
                "owner_parent_uid": PARENT_UID,
                "date_of_birth": "2019-05-01",
                "name_pronunciation": "Mee-ah",
            },
            "child-2": {"display_name": "Leo", "owner_parent_uid": PARENT_UID},
            "child-gone": {
                "display_name": "Old",
                "owner_parent_uid": PARENT_UID,
                "deleted_at": "2025-01-01T00:00:00+00:00",
            },
            "child-other": {"display_name": "Zed", "owner_parent_uid": "parent-2"},
        },
        "characters": {
            "char-7": {
                "display_name": "Captain Whiskers",
                "type": "pet",
                "owner_parent_uid": PARENT_UID,
                "child_id": "child-1",
                "description": "a brave ginger cat",
            },
            "char-8": {
                "display_name": "Grandpa Joe",
                "type": "family",
                "owner_parent_uid": PARENT_UID,
                "child_id": None,
            },
            "char-leo": {
                "display_name": "Robo",
                "type": "toy",
                "owner_parent_uid": PARENT_UID,
                "child_id": "child-2",
            },
            "char-deleted": {
                "display_name": "Ghost",
                "owner_parent_uid": PARENT_UID,
                "deleted_at": "2025-01-01T00:00:00+00:00",
            },
            "char-stranger": {"display_name": "Stranger", "owner_parent_uid": "parent-2"},
        },
        "story_sessions": {
            SESSION_ID: {
                "child_id": "child-1",
                "parent_uid": PARENT_UID,
                "phase": None,
                "status": "in_progress",
            },
        },
    }


class FakeClock:
    """Settable clock for lock staleness tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class InvokerCall:
    flow_name: str
    prompt: str
    model: str
    temperature: float
    contract: type[BaseModel]
    session_id: str | None


@dataclass
class FakeInvoker:
    """Stands in for AIInvoker with scripted responses per flow.

    Each flow has a queue; the last entry repeats once the queue is down to
    one. An exception entry is raised instead of returned.
    """

    responses: dict[str, list[Any]] = field(
        default_factory=lambda: {k: [v] for k, v in DEFAULT_RESPONSES.items()}
    )
    calls: list[InvokerCall] = field(default_factory=list)

    def script(self, flow_name: str, *results: Any) -> None:
        self.responses[flow_name] = list(results)

    def calls_for(self, flow_name: str) -> list[InvokerCall]:
        return [call for call in self.calls if call.flow_name == flow_name]

    async def generate(
        self,
        *,
        flow_name: str,
        prompt: str,
        model: str,
        temperature: float,
        contract: type[BaseModel],
        session_id: str | None = None,
        parent_uid: str | None = None,
    ) -> Any:
        self.calls.append(InvokerCall(flow_name, prompt, model, temperature, contract, session_id))
        queue = self.responses.get(flow_name)
        if not queue:
            raise AIInvocationError(flow_name, "no scripted response")
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, BaseException):
            raise result
        return contract.model_validate(result)


class MemoryMediaStorage:
    """Keeps saved media in a dict and returns ``memory://`` URLs."""

    def __init__(self) -> None:
        self.files: dict[str, tuple[bytes, str]] = {}

    async def save(self, path: str, data: bytes, content_type: str) -> str:
        self.files[path] = (data, content_type)
        return f"memory://{path}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryDocumentStore:
    return MemoryDocumentStore(seed_data(), clock=clock)


@pytest.fixture
def settings(tmp_path: Path) -> WorkflowSettings:
    return WorkflowSettings(
        store_path=":memory:",
        trace_dir=tmp_path / "logs",
        media_dir=tmp_path / "media",
    )


@pytest.fixture
def invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def generator_config() -> GeneratorConfig:
    return GeneratorConfig()


@pytest.fixture
def entities(store: MemoryDocumentStore) -> EntityDirectory:
    return EntityDirectory(store)


@pytest.fixture
def lock(store: MemoryDocumentStore, clock: FakeClock) -> CompileLockManager:
    return CompileLockManager(store, lock_timeout_seconds=120, clock=clock)


@pytest.fixture
def compiler(
    store: MemoryDocumentStore,
    invoker: FakeInvoker,
    generator_config: GeneratorConfig,
    entities: EntityDirectory,
) -> StoryCompiler:
    return StoryCompiler(store, invoker, generator_config, entities)  # type: ignore[arg-type]


@pytest.fixture
def compile_service(
    store: MemoryDocumentStore, lock: CompileLockManager, compiler: StoryCompiler
) -> CompileService:
    return CompileService(store, lock, compiler)


@pytest.fixture
def machine(
    store: MemoryDocumentStore,
    invoker: FakeInvoker,
    generator_config: GeneratorConfig,
    compile_service: CompileService,
    entities: EntityDirectory,
    settings: WorkflowSettings,
) -> PhaseStateMachine:
    return PhaseStateMachine(
        store,
        invoker,  # type: ignore[arg-type]
        generator_config,
        compile_service,
        entities,
        settings=settings,
    )


@pytest.fixture
def session_id(store: MemoryDocumentStore) -> str:
    """Fresh session for child-1 with no phase yet."""
    return SESSION_ID


@pytest.fixture
def media_storage() -> MemoryMediaStorage:
    return MemoryMediaStorage()


@pytest.fixture
def services(
    settings: WorkflowSettings,
    store: MemoryDocumentStore,
    invoker: FakeInvoker,
    generator_config: GeneratorConfig,
    entities: EntityDirectory,
    compile_service: CompileService,
    machine: PhaseStateMachine,
    media_storage: MemoryMediaStorage,
) -> StoryServices:
    return StoryServices(
        settings=settings,
        store=store,
        trace_store=MemoryTraceStore(),
        invoker=invoker,  # type: ignore[arg-type]
        config=generator_config,
        entities=entities,
        compile_service=compile_service,
        state_machine=machine,
        image_provider=PlaceholderImageProvider(),
        speech_synthesizer=SilentSpeechSynthesizer(),
        media_storage=media_storage,
    )
