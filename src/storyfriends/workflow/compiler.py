"""Story compilation: synopsis to finished story.

Generates the story text from the chosen synopsis and roster, resolves
entity placeholders to display names, writes the story document, and marks
the session complete. Locking is the caller's concern (see CompileService).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from storyfriends.ai.contracts import StoryDraft
from storyfriends.config import PromptKey
from storyfriends.errors import MissingPrerequisiteError
from storyfriends.models import JobStatus, Phase, SessionStatus, Story
from storyfriends.observability.logging import get_logger
from storyfriends.placeholders import (
    find_placeholder_ids,
    has_placeholders,
    resolve_placeholders,
)
from storyfriends.prompts import fill_template
from storyfriends.store.base import SERVER_TIMESTAMP
from storyfriends.workflow.entities import age_description, clean_ids, describe_entities
from storyfriends.workflow.sessions import STORIES_COLLECTION, load_story, update_session

if TYPE_CHECKING:
    from storyfriends.ai.invoker import AIInvoker
    from storyfriends.config import GeneratorConfig
    from storyfriends.models import Session
    from storyfriends.store.base import DocumentStore
    from storyfriends.workflow.entities import EntityDirectory

log = get_logger(__name__)

FLOW_NAME = "friends:story"

_IDLE_GENERATION = {"status": JobStatus.IDLE.value}


class StoryCompiler:
    """Produces the story artifact for a session."""

    def __init__(
        self,
        store: DocumentStore,
        invoker: AIInvoker,
        config: GeneratorConfig,
        entities: EntityDirectory,
    ) -> None:
        self._store = store
        self._invoker = invoker
        self._config = config
        self._entities = entities

    async def compile(self, session: Session, output_style_id: str | None = None) -> Story:
        """Generate, resolve, and persist the story for ``session``.

        Raises:
            MissingPrerequisiteError: No roster or no chosen synopsis.
            ChildNotFoundError: The primary child profile is gone.
            AIInvocationError: The model call failed.
        """
        participant_ids = clean_ids(session.selected_companion_ids)
        if not participant_ids:
            raise MissingPrerequisiteError(
                "companions", "No companions have been chosen for this story yet"
            )
        synopsis = session.selected_synopsis()
        if synopsis is None:
            raise MissingPrerequisiteError(
                "synopsis", "Choose a story outline before creating the story"
            )

        child = await self._entities.load_child(session.child_id)
        entity_map = await self._entities.resolve(participant_ids)

        scenario = session.selected_scenario()
        synopsis_text = f"{synopsis.title}: {synopsis.summary}"
        if scenario is not None:
            synopsis_text += f"\n(Adventure: {scenario.title}. {scenario.description})"

        settings = self._config.resolve(PromptKey.STORY_GENERATION)
        prompt = fill_template(
            settings.prompt,
            {
                "age_description": age_description(child),
                "selected_companions": describe_entities(
                    entity_map.values(), with_placeholders=True
                ),
                "selected_synopsis": synopsis_text,
            },
        )
        draft = await self._invoker.generate(
            flow_name=FLOW_NAME,
            prompt=prompt,
            model=settings.model,
            temperature=settings.temperature,
            contract=StoryDraft,
            session_id=session.id,
            parent_uid=session.parent_uid,
        )

        text = resolve_placeholders(draft.text, entity_map)
        title = resolve_placeholders(draft.title, entity_map)
        if has_placeholders(text) or has_placeholders(title):
            log.warning(
                "story_placeholders_unresolved",
                session_id=session.id,
                ids=find_placeholder_ids(f"{title}\n{text}"),
            )

        style = output_style_id or session.output_style_id
        await self._store.set(
            STORIES_COLLECTION,
            session.id,
            {
                "session_id": session.id,
                "child_id": session.child_id,
                "parent_uid": session.parent_uid,
                "title": title,
                "mood": draft.mood,
                "text": text,
                "source_text": draft.text,
                "participant_ids": participant_ids,
                "output_style_id": style,
                "narration_generation": dict(_IDLE_GENERATION),
                "avatar_generation": dict(_IDLE_GENERATION),
                "title_generation": dict(_IDLE_GENERATION),
                "created_at": SERVER_TIMESTAMP,
                "updated_at": SERVER_TIMESTAMP,
            },
        )
        await update_session(
            self._store,
            session.id,
            {
                "phase": Phase.COMPLETE.value,
                "status": SessionStatus.COMPLETED.value,
                "story_title": title,
                "story_mood": draft.mood,
                "actors": participant_ids,
                "output_style_id": style,
            },
        )

        story = await load_story(self._store, session.id)
        if story is None:
            raise RuntimeError(f"Story for session '{session.id}' missing after write")
        log.info(
            "story_compiled",
            session_id=session.id,
            participants=len(participant_ids),
            chars=len(text),
        )
        return story
