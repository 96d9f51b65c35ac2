"""End-to-end tests for the story workflow.

The mocked tests wire the real stack (SQLite store, AI invoker, JSONL trace,
local media storage) around a scripted chat model. The live test makes a
real API call and may incur costs.

Run with: uv run pytest tests/integration/ -v --tb=short
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage

from storyfriends.config import GeneratorConfig, WorkflowSettings
from storyfriends.models import (
    Action,
    CharacterSelectionOutput,
    FinishedOutput,
    ScenarioSelectionOutput,
    SynopsisSelectionOutput,
)
from storyfriends.observability.ai_trace import JSONLTraceStore
from storyfriends.services import StoryServices, build_services
from storyfriends.workflow.fanout import fan_out
from storyfriends.workflow.sessions import create_session, load_session, load_story
from storyfriends.workflow.state_machine import AdvanceRequest

SCRIPT: list[dict[str, Any]] = [
    {"proposed_ids": ["child-1", "char-1"], "rationale": "Pip loves adventures"},
    {
        "scenarios": [
            {"id": "A", "title": "Cloud Kite", "description": "Fly a kite above the clouds."},
            {"id": "B", "title": "Beach Dig", "description": "Dig for a pirate's spoon."},
        ]
    },
    {
        "synopses": [
            {"id": "A", "title": "Up and Away", "summary": "The kite pulls them skyward."},
            {"id": "B", "title": "Stuck Kite", "summary": "The kite snags on a cloud."},
        ]
    },
    {
        "title": "$$child-1$$ and the Cloud Kite",
        "mood": "adventurous",
        "text": (
            "$$child-1$$ and $$char-1$$ held the kite string tight as the wind lifted "
            "them over the rooftops and into the soft white clouds."
        ),
    },
    {"title": "The Cloud Kite"},
]


def _raw(payload: dict[str, Any]) -> dict[str, Any]:
    return {"parsed": payload, "raw": AIMessage(content=json.dumps(payload)), "parsing_error": None}


def _scripted_model() -> MagicMock:
    model = MagicMock()
    model.with_structured_output.return_value.ainvoke = AsyncMock(
        side_effect=[_raw(payload) for payload in SCRIPT]
    )
    return model


async def _seed_family(services: StoryServices) -> str:
    await services.store.set(
        "children",
        "child-1",
        {"display_name": "Ada", "owner_parent_uid": "parent-1", "date_of_birth": "2020-03-02"},
    )
    await services.store.set(
        "characters",
        "char-1",
        {"display_name": "Pip", "type": "toy", "owner_parent_uid": "parent-1"},
    )
    return await create_session(services.store, "child-1", "parent-1")


@pytest.fixture
def sqlite_settings(tmp_path: Path) -> WorkflowSettings:
    return WorkflowSettings(
        store_path=str(tmp_path / "store.db"),
        trace_dir=tmp_path / "logs",
        media_dir=tmp_path / "media",
    )


class TestMockedStoryFlow:
    """Full walkthrough on the real stack with a scripted model."""

    @pytest.mark.asyncio
    async def test_session_to_enriched_story(self, sqlite_settings: WorkflowSettings) -> None:
        services = await build_services(
            sqlite_settings, model_factory=MagicMock(return_value=_scripted_model())
        )
        try:
            sid = await _seed_family(services)
            machine = services.state_machine

            proposal = await machine.advance(AdvanceRequest(session_id=sid))
            assert isinstance(proposal, CharacterSelectionOutput)
            assert proposal.proposed_companion_ids == ["child-1", "char-1"]

            scenarios = await machine.advance(
                AdvanceRequest(session_id=sid, action=Action.CONFIRM_COMPANIONS)
            )
            assert isinstance(scenarios, ScenarioSelectionOutput)

            synopses = await machine.advance(
                AdvanceRequest(session_id=sid, selected_option_id="A")
            )
            assert isinstance(synopses, SynopsisSelectionOutput)

            story_output = await machine.advance(
                AdvanceRequest(session_id=sid, selected_option_id="B", output_style_id="bedtime")
            )
            assert isinstance(story_output, FinishedOutput)
            assert story_output.fresh is True
            assert story_output.title == "Ada and the Cloud Kite"

            results = await fan_out(story_output.story_id, services.enrichment_jobs())
            assert all(result.ok for result in results)

            story = await load_story(services.store, sid)
            assert story is not None
            assert story.output_style_id == "bedtime"
            assert story.refined_title == "The Cloud Kite"
            assert story.narration_url is not None
            assert story.narration_url.startswith("file://")
            assert (sqlite_settings.media_dir / "stories" / sid).is_dir()
        finally:
            services.close()

        entries = JSONLTraceStore(sqlite_settings.trace_dir).read_entries()
        assert [entry.flow_name for entry in entries] == [
            "friends:companions",
            "friends:scenarios",
            "friends:synopses",
            "friends:story",
            "friends:title",
        ]

    @pytest.mark.asyncio
    async def test_completed_story_survives_restart(
        self, sqlite_settings: WorkflowSettings
    ) -> None:
        """A reopened store replays the finished story without model calls."""
        first = await build_services(
            sqlite_settings, model_factory=MagicMock(return_value=_scripted_model())
        )
        try:
            sid = await _seed_family(first)
            await first.state_machine.advance(AdvanceRequest(session_id=sid))
            await first.state_machine.advance(
                AdvanceRequest(session_id=sid, action=Action.CONFIRM_COMPANIONS)
            )
            for option_id in ("A", "A"):
                await first.state_machine.advance(
                    AdvanceRequest(session_id=sid, selected_option_id=option_id)
                )
        finally:
            first.close()

        factory = MagicMock()
        second = await build_services(sqlite_settings, model_factory=factory)
        try:
            replay = await second.state_machine.advance(AdvanceRequest(session_id=sid))
            session = await load_session(second.store, sid)
        finally:
            second.close()

        assert isinstance(replay, FinishedOutput)
        assert replay.already_completed is True
        assert session.compile_in_progress is False
        factory.assert_not_called()


class TestLiveProposal:
    """Companion proposal against a real provider."""

    @pytest.mark.asyncio
    async def test_companion_proposal(self, live_model_string: str, tmp_path: Path) -> None:
        settings = WorkflowSettings(
            store_path=":memory:", trace_dir=tmp_path / "logs", media_dir=tmp_path / "media"
        )
        services = await build_services(
            settings, config=GeneratorConfig(default_model=live_model_string)
        )
        sid = await _seed_family(services)

        output = await services.state_machine.advance(AdvanceRequest(session_id=sid))

        assert isinstance(output, CharacterSelectionOutput), output
        assert output.proposed_companion_ids[0] == "child-1"
        assert set(output.proposed_companion_ids) <= {"child-1", "char-1"}
