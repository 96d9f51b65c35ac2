"""Tests for service wiring."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

from storyfriends.config import PromptKey
from storyfriends.observability.ai_trace import DocumentTraceStore, JSONLTraceStore
from storyfriends.providers.base import ProviderConfigError
from storyfriends.providers.media import LocalMediaStorage
from storyfriends.services import build_services, open_store
from storyfriends.store.memory import MemoryDocumentStore
from storyfriends.store.sqlite import SqliteDocumentStore
from storyfriends.workflow.enrichment import AvatarJob, NarrationJob, TitleJob

if TYPE_CHECKING:
    from pathlib import Path

    from storyfriends.config import WorkflowSettings


class TestOpenStore:
    """Tests for open_store."""

    def test_memory(self, settings: WorkflowSettings) -> None:
        assert isinstance(open_store(settings), MemoryDocumentStore)

    def test_sqlite(self, settings: WorkflowSettings, tmp_path: Path) -> None:
        store = open_store(replace(settings, store_path=str(tmp_path / "s.db")))
        assert isinstance(store, SqliteDocumentStore)
        store.close()


class TestBuildServices:
    """Tests for build_services."""

    @pytest.mark.asyncio
    async def test_defaults(self, settings: WorkflowSettings) -> None:
        services = await build_services(settings, model_factory=MagicMock())

        assert isinstance(services.trace_store, JSONLTraceStore)
        assert isinstance(services.media_storage, LocalMediaStorage)
        jobs = services.enrichment_jobs()
        assert [type(job) for job in jobs] == [NarrationJob, AvatarJob, TitleJob]
        assert [job.name for job in jobs] == ["narration", "avatar", "title"]

    @pytest.mark.asyncio
    async def test_trace_to_store(self, settings: WorkflowSettings) -> None:
        services = await build_services(
            replace(settings, trace_to_store=True), model_factory=MagicMock()
        )
        assert isinstance(services.trace_store, DocumentTraceStore)

    @pytest.mark.asyncio
    async def test_generator_document_from_store(self, settings: WorkflowSettings) -> None:
        store = MemoryDocumentStore.from_dict(
            {"story_generators": {"bedtime": {"default_model": "openai/gpt-5-mini"}}}
        )

        services = await build_services(
            replace(settings, generator_id="bedtime"), store=store, model_factory=MagicMock()
        )

        assert services.config.resolve(PromptKey.STORY_GENERATION).model == "openai/gpt-5-mini"

    @pytest.mark.asyncio
    async def test_generator_yaml_wins(self, settings: WorkflowSettings, tmp_path: Path) -> None:
        path = tmp_path / "generator.yaml"
        path.write_text("default_model: ollama/qwen3:8b\n")
        store = MemoryDocumentStore.from_dict(
            {"story_generators": {"friends": {"default_model": "openai/gpt-5-mini"}}}
        )

        services = await build_services(
            replace(settings, generator_path=path), store=store, model_factory=MagicMock()
        )

        assert services.config.default_model == "ollama/qwen3:8b"

    @pytest.mark.asyncio
    async def test_unknown_media_provider(self, settings: WorkflowSettings) -> None:
        with pytest.raises(ProviderConfigError):
            await build_services(
                replace(settings, image_provider="crayons"), model_factory=MagicMock()
            )
