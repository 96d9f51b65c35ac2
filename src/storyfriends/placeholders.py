"""Entity placeholder resolution for generated story text.

Stories are generated with entity tokens instead of names so the same text
can be rendered with display names for reading and with pronunciation
spellings for narration. Two token forms are recognised:

- ``$$<id>$$``: the canonical form, any id without ``$``.
- ``$<id>$``: a loose form some models emit, only for long alphanumeric ids
  (15+ characters) so ordinary prices like ``$5$`` are never touched.

Unknown tokens are left in place.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from storyfriends.models import ChildProfile, Entity

_CANONICAL_RE = re.compile(r"\$\$([^$]+)\$\$")
_LOOSE_RE = re.compile(r"\$([a-zA-Z0-9]{15,})\$")


def _display(entity: Entity, for_speech: bool) -> str:
    if for_speech and isinstance(entity, ChildProfile) and entity.name_pronunciation:
        return entity.name_pronunciation
    return entity.display_name


def resolve_placeholders(
    text: str,
    entity_map: Mapping[str, Entity],
    *,
    for_speech: bool = False,
) -> str:
    """Replace entity tokens with display names.

    Args:
        text: Text containing ``$$id$$`` tokens.
        entity_map: Entity id to entity.
        for_speech: Prefer ``name_pronunciation`` where the entity has one.

    Returns:
        Text with every mapped token replaced.
    """
    if not text:
        return text

    def _sub(match: re.Match[str]) -> str:
        entity = entity_map.get(match.group(1).strip())
        return _display(entity, for_speech) if entity is not None else match.group(0)

    resolved = _CANONICAL_RE.sub(_sub, text)
    return _LOOSE_RE.sub(_sub, resolved)


def find_placeholder_ids(text: str) -> list[str]:
    """Return ids referenced by tokens, in first-seen order, without duplicates."""
    seen: dict[str, None] = {}
    for match in _CANONICAL_RE.finditer(text):
        seen.setdefault(match.group(1).strip(), None)
    for match in _LOOSE_RE.finditer(_CANONICAL_RE.sub("", text)):
        seen.setdefault(match.group(1), None)
    return list(seen)


def has_placeholders(text: str) -> bool:
    return bool(_CANONICAL_RE.search(text) or _LOOSE_RE.search(text))
