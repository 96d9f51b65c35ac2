"""Entity lookup for story companions.

Two collections hold entities that can appear in a story: ``children``
(child profiles, including the primary child) and ``characters`` (family
or child-scoped friends, pets, toys). Lookups probe ``children`` first and
then ``characters``; the first match wins.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from storyfriends.errors import ChildNotFoundError
from storyfriends.models import Character, ChildProfile, CompanionOption, Entity
from storyfriends.observability.logging import get_logger

if TYPE_CHECKING:
    from storyfriends.store.base import DocumentStore

log = get_logger(__name__)

CHILDREN_COLLECTION = "children"
CHARACTERS_COLLECTION = "characters"


def clean_ids(ids: Iterable[Any] | None) -> list[str]:
    """Drop blank and non-string ids and duplicates, preserving order."""
    seen: dict[str, None] = {}
    for raw in ids or ():
        if isinstance(raw, str) and raw.strip():
            seen.setdefault(raw.strip(), None)
    return list(seen)


def age_in_years(date_of_birth: date, today: date | None = None) -> int:
    today = today or datetime.now(UTC).date()
    years = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return max(years, 0)


def age_band(age: int) -> str:
    if age <= 2:
        return "toddler"
    if age <= 5:
        return "preschool"
    if age <= 8:
        return "early reader"
    return "independent reader"


def age_description(child: ChildProfile, today: date | None = None) -> str:
    """One-line description of the child for prompts."""
    if child.date_of_birth is None:
        text = f"{child.display_name}, a young child (age unknown)"
    else:
        age = age_in_years(child.date_of_birth, today)
        text = f"{child.display_name}, {age} years old ({age_band(age)})"
    if child.description:
        text += f". {child.description}"
    return text


def companion_option(entity: Entity) -> CompanionOption:
    return CompanionOption(
        id=entity.id,
        display_name=entity.display_name,
        kind="child" if isinstance(entity, ChildProfile) else "character",
        avatar_url=entity.avatar_url,
    )


def describe_entities(entities: Iterable[Entity], *, with_placeholders: bool = False) -> str:
    """Prompt block listing entities, one per line."""
    lines = []
    for entity in entities:
        if isinstance(entity, ChildProfile):
            kind = "child"
        else:
            kind = entity.type
        name = f"$${entity.id}$$" if with_placeholders else entity.id
        line = f"- {name}: {entity.display_name} ({kind})"
        if entity.description:
            line += f", {entity.description}"
        lines.append(line)
    return "\n".join(lines)


class EntityDirectory:
    """Reads child profiles and characters from the document store."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def load_child(self, child_id: str) -> ChildProfile:
        """Load the primary child.

        Raises:
            ChildNotFoundError: If the profile is missing, soft-deleted, or malformed.
        """
        if not child_id or not child_id.strip():
            raise ChildNotFoundError(child_id)
        data = await self._store.get(CHILDREN_COLLECTION, child_id)
        if data is None:
            raise ChildNotFoundError(child_id)
        try:
            child = ChildProfile.model_validate(data)
        except ValidationError as e:
            log.warning("child_profile_invalid", child_id=child_id, error=str(e))
            raise ChildNotFoundError(child_id) from e
        if child.deleted_at:
            raise ChildNotFoundError(child_id)
        return child

    async def eligible_roster(self, child: ChildProfile) -> list[Entity]:
        """Primary child, then same-owner siblings, then same-owner characters.

        Characters qualify when scoped to this child or family-wide. Deleted
        entities are excluded.
        """
        roster: list[Entity] = [child]
        siblings = await self._store.query(
            CHILDREN_COLLECTION, owner_parent_uid=child.owner_parent_uid
        )
        for data in siblings:
            sibling = self._parse(ChildProfile, data)
            if sibling is not None and sibling.id != child.id and not sibling.deleted_at:
                roster.append(sibling)

        characters = await self._store.query(
            CHARACTERS_COLLECTION, owner_parent_uid=child.owner_parent_uid
        )
        for data in characters:
            character = self._parse(Character, data)
            if character is None or character.deleted_at:
                continue
            if character.child_id in (None, "", child.id):
                roster.append(character)
        return roster

    async def get(self, entity_id: str) -> Entity | None:
        """Resolve one id, probing children before characters."""
        data = await self._store.get(CHILDREN_COLLECTION, entity_id)
        if data is not None:
            child = self._parse(ChildProfile, data)
            if child is not None:
                return child
        data = await self._store.get(CHARACTERS_COLLECTION, entity_id)
        if data is not None:
            return self._parse(Character, data)
        return None

    async def resolve(self, ids: Iterable[Any]) -> dict[str, Entity]:
        """Resolve ids to entities in order. Blank and unknown ids are skipped."""
        resolved: dict[str, Entity] = {}
        for entity_id in clean_ids(ids):
            entity = await self.get(entity_id)
            if entity is None:
                log.warning("entity_not_found", entity_id=entity_id)
                continue
            resolved[entity_id] = entity
        return resolved

    @staticmethod
    def _parse(model: type[ChildProfile] | type[Character], data: dict[str, Any]) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            log.warning("entity_invalid", entity_id=data.get("id"), error=str(e))
            return None
