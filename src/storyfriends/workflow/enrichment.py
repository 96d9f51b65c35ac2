"""Story enrichment jobs run by the background fan-out.

Each job owns one status sub-object on the story document and one output
field, and writes nothing else:

====================  ==========================  ================
Job                   Status sub-object           Output field
====================  ==========================  ================
``narration``         ``narration_generation``    ``narration_url``
``avatar``            ``avatar_generation``       ``avatar_url``
``title``             ``title_generation``        ``refined_title``
====================  ==========================  ================

Status moves ``running`` then ``ready`` or ``error``. A job whose status is
already ``ready`` does nothing, so re-running the fan-out is harmless.
Failures are recorded on the story and re-raised for the fan-out to log.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from storyfriends.ai.contracts import TitleSuggestion
from storyfriends.config import PromptKey
from storyfriends.models import JobStatus
from storyfriends.observability.logging import get_logger
from storyfriends.placeholders import resolve_placeholders
from storyfriends.prompts import fill_template
from storyfriends.store.base import SERVER_TIMESTAMP
from storyfriends.workflow.sessions import STORIES_COLLECTION, load_story

if TYPE_CHECKING:
    from storyfriends.ai.invoker import AIInvoker
    from storyfriends.config import GeneratorConfig
    from storyfriends.models import Story
    from storyfriends.providers.media import ImageProvider, MediaStorage, SpeechSynthesizer
    from storyfriends.store.base import DocumentStore
    from storyfriends.workflow.entities import EntityDirectory

log = get_logger(__name__)

_QUOTES = "\"'“”‘’"


class StoryNotFoundError(LookupError):
    def __init__(self, story_id: str) -> None:
        self.story_id = story_id
        super().__init__(f"Story '{story_id}' not found")


class StatusTrackedJob(ABC):
    """Base for jobs that track their progress on a story sub-object.

    Subclasses set ``name`` and ``status_field`` and implement ``produce``,
    which returns the output fields to write on success.
    """

    name: str = ""
    status_field: str = ""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    @abstractmethod
    async def produce(self, story: Story) -> dict[str, Any]:
        """Generate the job's output fields for ``story``."""

    async def _set_status(self, story_id: str, updates: dict[str, Any]) -> None:
        prefixed = {f"{self.status_field}.{key}": value for key, value in updates.items()}
        await self._store.update(STORIES_COLLECTION, story_id, prefixed)

    async def run(self, story_id: str) -> None:
        story = await load_story(self._store, story_id)
        if story is None:
            raise StoryNotFoundError(story_id)

        state = getattr(story, self.status_field)
        if state.status == JobStatus.READY:
            log.debug("enrichment_job_skipped", story_id=story_id, job=self.name)
            return

        await self._set_status(
            story_id,
            {
                "status": JobStatus.RUNNING.value,
                "last_run_at": SERVER_TIMESTAMP,
                "last_error_message": None,
            },
        )
        try:
            outputs = await self.produce(story)
            await self._store.update(
                STORIES_COLLECTION,
                story_id,
                {
                    **outputs,
                    f"{self.status_field}.status": JobStatus.READY.value,
                    f"{self.status_field}.last_completed_at": SERVER_TIMESTAMP,
                    "updated_at": SERVER_TIMESTAMP,
                },
            )
        except Exception as e:
            await self._set_status(
                story_id,
                {"status": JobStatus.ERROR.value, "last_error_message": str(e) or type(e).__name__},
            )
            raise
        log.info("enrichment_job_ready", story_id=story_id, job=self.name)


class NarrationJob(StatusTrackedJob):
    """Synthesizes narration audio for the story text.

    Names are spoken with each child's pronunciation spelling when set.
    """

    name = "narration"
    status_field = "narration_generation"

    def __init__(
        self,
        store: DocumentStore,
        entities: EntityDirectory,
        synthesizer: SpeechSynthesizer,
        storage: MediaStorage,
    ) -> None:
        super().__init__(store)
        self._entities = entities
        self._synthesizer = synthesizer
        self._storage = storage

    async def produce(self, story: Story) -> dict[str, Any]:
        if story.source_text:
            entity_map = await self._entities.resolve(story.participant_ids)
            text = resolve_placeholders(story.source_text, entity_map, for_speech=True)
        else:
            text = story.text
        audio = await self._synthesizer.synthesize(f"{story.title}.\n\n{text}")
        url = await self._storage.save(
            f"stories/{story.id}/narration", audio.audio_data, audio.content_type
        )
        return {"narration_url": url}


class AvatarJob(StatusTrackedJob):
    """Generates a group portrait of the story's participants."""

    name = "avatar"
    status_field = "avatar_generation"

    def __init__(
        self,
        store: DocumentStore,
        entities: EntityDirectory,
        image_provider: ImageProvider,
        storage: MediaStorage,
    ) -> None:
        super().__init__(store)
        self._entities = entities
        self._image_provider = image_provider
        self._storage = storage

    async def produce(self, story: Story) -> dict[str, Any]:
        entity_map = await self._entities.resolve(story.participant_ids)
        if not entity_map:
            raise ValueError("Story has no resolvable participants to draw")
        people = "; ".join(
            f"{entity.display_name}" + (f" ({entity.description})" if entity.description else "")
            for entity in entity_map.values()
        )
        prompt = (
            "Warm, colorful picture-book illustration of friends smiling together: "
            f"{people}. Mood: {story.mood or 'happy'}. Soft light, no text."
        )
        image = await self._image_provider.generate(prompt, aspect_ratio="3:2")
        url = await self._storage.save(
            f"stories/{story.id}/participants", image.image_data, image.content_type
        )
        return {"avatar_url": url}


def clean_title(title: str) -> str:
    """Trim whitespace and surrounding quote marks from a model title."""
    return title.strip().strip(_QUOTES).strip()


class TitleJob(StatusTrackedJob):
    """Asks the model for a more polished title."""

    name = "title"
    status_field = "title_generation"
    flow_name = "friends:title"

    def __init__(self, store: DocumentStore, invoker: AIInvoker, config: GeneratorConfig) -> None:
        super().__init__(store)
        self._invoker = invoker
        self._config = config

    async def produce(self, story: Story) -> dict[str, Any]:
        settings = self._config.resolve(PromptKey.TITLE_REFINEMENT)
        prompt = fill_template(
            settings.prompt, {"story_title": story.title, "story_text": story.text}
        )
        suggestion = await self._invoker.generate(
            flow_name=self.flow_name,
            prompt=prompt,
            model=settings.model,
            temperature=settings.temperature,
            contract=TitleSuggestion,
            session_id=story.session_id,
            parent_uid=story.parent_uid,
        )
        title = clean_title(suggestion.title)
        if not title:
            raise ValueError("Model returned an empty title")
        return {"refined_title": title}
