"""Pydantic models for workflow records and phase outputs.

Persisted records (sessions, stories, entities) are stored as plain
JSON-compatible documents; these models validate them on read. Unknown
document fields are ignored so records written by other tools still load.

Phase outputs form a discriminated union on ``state``. They are derived at
response time and never persisted.
"""

from __future__ import annotations

from datetime import date
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class Phase(StrEnum):
    """Persisted workflow phase, in forward order."""

    CHARACTER_SELECTION = "character_selection"
    SCENARIO_SELECTION = "scenario_selection"
    SYNOPSIS_SELECTION = "synopsis_selection"
    STORY_GENERATION = "story_generation"
    COMPLETE = "complete"


class SessionStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class JobStatus(StrEnum):
    """Status of one enrichment job on a story."""

    IDLE = "idle"
    RUNNING = "running"
    READY = "ready"
    ERROR = "error"


class Action(StrEnum):
    """Caller actions understood by the state machine."""

    CONFIRM_COMPANIONS = "confirm_companions"
    CHANGE_COMPANIONS = "change_companions"
    MORE_SYNOPSES = "more_synopses"


class ErrorKind(StrEnum):
    """Failure classes surfaced to callers."""

    INPUT = "input"
    UPSTREAM = "upstream"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Options offered to the child
# ---------------------------------------------------------------------------


class Scenario(BaseModel):
    """Adventure premise option."""

    id: str = Field(min_length=1, description="Short stable option id (e.g. 'A')")
    title: str = Field(min_length=1, description="Short catchy title")
    description: str = Field(min_length=1, description="One or two sentence premise")


class Synopsis(BaseModel):
    """Plot outline option for the chosen scenario."""

    id: str = Field(min_length=1, description="Short stable option id (e.g. 'A')")
    title: str = Field(min_length=1, description="Short story title")
    summary: str = Field(min_length=1, description="Two or three sentence plot outline")


class CompanionOption(BaseModel):
    """An entity the child can pick as a story companion."""

    id: str
    display_name: str
    kind: Literal["child", "character"]
    avatar_url: str | None = None


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class ChildProfile(_Record):
    id: str
    display_name: str
    owner_parent_uid: str
    date_of_birth: date | None = None
    avatar_url: str | None = None
    name_pronunciation: str | None = None
    description: str | None = None
    deleted_at: str | None = None


class Character(_Record):
    id: str
    display_name: str
    type: str = "friend"
    owner_parent_uid: str
    child_id: str | None = Field(
        default=None, description="Child this character belongs to; None means family-wide"
    )
    avatar_url: str | None = None
    description: str | None = None
    deleted_at: str | None = None


Entity = ChildProfile | Character


# ---------------------------------------------------------------------------
# Session and story documents
# ---------------------------------------------------------------------------


class Session(_Record):
    """Persisted per-session workflow state."""

    id: str
    child_id: str
    parent_uid: str
    phase: Phase | None = None
    status: SessionStatus = SessionStatus.IN_PROGRESS

    proposed_companion_ids: list[str] = Field(default_factory=list)
    selected_companion_ids: list[str] = Field(default_factory=list)
    scenarios: list[Scenario] = Field(default_factory=list)
    selected_scenario_id: str | None = None
    synopses: list[Synopsis] = Field(default_factory=list)
    selected_synopsis_id: str | None = None

    compile_in_progress: bool = False
    compile_started_at: str | None = None
    compile_request_id: str | None = None
    last_compile_error: str | None = None

    output_style_id: str | None = None
    story_title: str | None = None
    story_mood: str | None = None
    actors: list[str] = Field(default_factory=list)

    created_at: str | None = None
    updated_at: str | None = None

    def selected_scenario(self) -> Scenario | None:
        return next((s for s in self.scenarios if s.id == self.selected_scenario_id), None)

    def selected_synopsis(self) -> Synopsis | None:
        return next((s for s in self.synopses if s.id == self.selected_synopsis_id), None)


class GenerationState(_Record):
    """Status of one enrichment job, stored as a sub-object of the story."""

    status: JobStatus = JobStatus.IDLE
    last_run_at: str | None = None
    last_completed_at: str | None = None
    last_error_message: str | None = None


class Story(_Record):
    """Compiled story artifact, keyed by session id."""

    id: str
    session_id: str
    child_id: str
    parent_uid: str
    title: str
    mood: str | None = None
    text: str
    source_text: str | None = Field(
        default=None, description="Text with entity placeholders, kept for narration"
    )
    participant_ids: list[str] = Field(default_factory=list)
    output_style_id: str | None = None

    narration_generation: GenerationState = Field(default_factory=GenerationState)
    avatar_generation: GenerationState = Field(default_factory=GenerationState)
    title_generation: GenerationState = Field(default_factory=GenerationState)

    narration_url: str | None = None
    avatar_url: str | None = None
    refined_title: str | None = None

    created_at: str | None = None
    updated_at: str | None = None


# ---------------------------------------------------------------------------
# Phase outputs
# ---------------------------------------------------------------------------


class CharacterSelectionOutput(BaseModel):
    ok: Literal[True] = True
    state: Literal["character_selection"] = "character_selection"
    question: str = "Who should come along on this adventure?"
    companions: list[CompanionOption] = Field(
        default_factory=list, description="Full eligible roster"
    )
    proposed_companion_ids: list[str] = Field(default_factory=list)


class ScenarioSelectionOutput(BaseModel):
    ok: Literal[True] = True
    state: Literal["scenario_selection"] = "scenario_selection"
    question: str = "What kind of adventure should it be?"
    selected_companion_ids: list[str] = Field(default_factory=list)
    scenarios: list[Scenario]


class SynopsisSelectionOutput(BaseModel):
    ok: Literal[True] = True
    state: Literal["synopsis_selection"] = "synopsis_selection"
    question: str = "Which story should we tell?"
    scenario: Scenario | None = None
    synopses: list[Synopsis]


class FinishedOutput(BaseModel):
    ok: Literal[True] = True
    state: Literal["finished"] = "finished"
    story_id: str
    title: str
    mood: str | None = None
    text: str
    participant_ids: list[str] = Field(default_factory=list)
    already_completed: bool = False
    # Set when this request produced the story, so enrichment gets scheduled.
    fresh: bool = Field(default=False, exclude=True)


class ErrorOutput(BaseModel):
    ok: Literal[False] = False
    state: Literal["error"] = "error"
    error: str
    kind: ErrorKind = ErrorKind.INTERNAL
    in_progress: bool = False


PhaseOutput = Annotated[
    CharacterSelectionOutput
    | ScenarioSelectionOutput
    | SynopsisSelectionOutput
    | FinishedOutput
    | ErrorOutput,
    Field(discriminator="state"),
]
