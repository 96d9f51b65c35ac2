"""Tests for the HTTP API."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fastapi.testclient import TestClient

from storyfriends.api import REQUEST_ID_HEADER, create_app
from storyfriends.errors import AIInvocationError
from storyfriends.models import Phase
from storyfriends.workflow.sessions import SESSIONS_COLLECTION, STORIES_COLLECTION

if TYPE_CHECKING:
    from conftest import FakeClock, FakeInvoker

    from storyfriends.services import StoryServices
    from storyfriends.store.memory import MemoryDocumentStore


@pytest.fixture
def client(services: StoryServices) -> TestClient:
    return TestClient(create_app(services))


@pytest.fixture
def ready_session(store: MemoryDocumentStore, session_id: str) -> str:
    store._data[SESSIONS_COLLECTION][session_id].update(
        {
            "phase": Phase.STORY_GENERATION.value,
            "selected_companion_ids": ["child-1", "char-7"],
            "scenarios": [{"id": "A", "title": "Moon Boat", "description": "To the moon."}],
            "selected_scenario_id": "A",
            "synopses": [{"id": "A", "title": "Starlight Sail", "summary": "Off they go."}],
            "selected_synopsis_id": "A",
        }
    )
    return session_id


class TestHealth:
    """Tests for the health endpoint and request ids."""

    def test_healthz(self, client: TestClient) -> None:
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_request_id_echoed(self, client: TestClient) -> None:
        response = client.get("/healthz", headers={REQUEST_ID_HEADER: "req-abc"})
        assert response.headers[REQUEST_ID_HEADER] == "req-abc"

    def test_request_id_generated(self, client: TestClient) -> None:
        response = client.get("/healthz")
        assert response.headers[REQUEST_ID_HEADER]


class TestStoryFriends:
    """Tests for POST /api/story-friends."""

    def test_full_walkthrough(
        self, client: TestClient, store: MemoryDocumentStore, session_id: str
    ) -> None:
        """Walk every phase and check enrichment ran after the story."""
        first = client.post("/api/story-friends", json={"session_id": session_id})
        assert first.status_code == 200
        assert first.json()["state"] == "character_selection"
        assert first.json()["proposed_companion_ids"] == ["child-1", "char-7"]

        scenarios = client.post(
            "/api/story-friends",
            json={
                "session_id": session_id,
                "action": "confirm_companions",
                "selected_companion_ids": ["char-7"],
            },
        )
        assert scenarios.json()["state"] == "scenario_selection"
        assert scenarios.json()["selected_companion_ids"] == ["child-1", "char-7"]

        synopses = client.post(
            "/api/story-friends", json={"session_id": session_id, "selected_option_id": "A"}
        )
        assert synopses.json()["state"] == "synopsis_selection"
        assert synopses.json()["scenario"]["title"] == "Moon Boat"

        finished = client.post(
            "/api/story-friends", json={"session_id": session_id, "selected_option_id": "B"}
        )
        body = finished.json()
        assert finished.status_code == 200
        assert body["state"] == "finished"
        assert body["title"] == "Mia and the Moon Boat"
        assert "fresh" not in body

        story = store._data[STORIES_COLLECTION][session_id]
        assert story["narration_generation"]["status"] == "ready"
        assert story["avatar_generation"]["status"] == "ready"
        assert story["refined_title"] == "The Moonlight Boat"

    def test_replay_does_not_enrich_again(
        self, client: TestClient, invoker: FakeInvoker, ready_session: str
    ) -> None:
        client.post("/api/story-compile", json={"session_id": ready_session})
        title_calls = len(invoker.calls_for("friends:title"))

        replay = client.post("/api/story-friends", json={"session_id": ready_session})

        assert replay.json()["already_completed"] is True
        assert len(invoker.calls_for("friends:title")) == title_calls

    def test_unknown_session_is_404(self, client: TestClient) -> None:
        response = client.post("/api/story-friends", json={"session_id": "nope"})
        assert response.status_code == 404
        assert response.json()["ok"] is False
        assert response.json()["kind"] == "input"

    def test_invalid_action_is_400(self, client: TestClient, session_id: str) -> None:
        response = client.post(
            "/api/story-friends", json={"session_id": session_id, "action": "fly_away"}
        )
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid request")

    def test_missing_session_id_is_400(self, client: TestClient) -> None:
        response = client.post("/api/story-friends", json={})
        assert response.status_code == 400

    def test_upstream_failure_is_502(
        self, client: TestClient, invoker: FakeInvoker, session_id: str
    ) -> None:
        invoker.script("friends:companions", AIInvocationError("friends:companions", "timeout"))

        response = client.post("/api/story-friends", json={"session_id": session_id})

        assert response.status_code == 502
        assert response.json()["kind"] == "upstream"


class TestStoryCompile:
    """Tests for POST /api/story-compile."""

    def test_compile(self, client: TestClient, ready_session: str) -> None:
        response = client.post("/api/story-compile", json={"session_id": ready_session})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "story_id": ready_session}

    def test_compile_replay(self, client: TestClient, ready_session: str) -> None:
        client.post("/api/story-compile", json={"session_id": ready_session})

        response = client.post("/api/story-compile", json={"session_id": ready_session})

        assert response.json() == {
            "ok": True,
            "story_id": ready_session,
            "already_completed": True,
        }

    def test_compile_in_progress_is_409(
        self,
        client: TestClient,
        store: MemoryDocumentStore,
        clock: FakeClock,
        ready_session: str,
    ) -> None:
        store._data[SESSIONS_COLLECTION][ready_session].update(
            {"compile_in_progress": True, "compile_started_at": clock.now.isoformat()}
        )

        response = client.post("/api/story-compile", json={"session_id": ready_session})

        assert response.status_code == 409
        assert response.json()["ok"] is False
        assert response.json()["already_in_progress"] is True

    def test_compile_unknown_session(self, client: TestClient) -> None:
        response = client.post("/api/story-compile", json={"session_id": "nope"})
        assert response.status_code == 404
