"""Built-in prompt templates and template filling.

Templates use ``{{name}}`` slots. Unknown slots are left in place so a
generator override can reference fields a given phase does not provide.
These are the last layer of prompt resolution; a generator configuration
may override any of them per prompt key.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

COMPANION_PROPOSAL = """\
You help young children build a cast for a bedtime story.

CHILD:
{{age_description}}

WHO CAN COME ALONG (id: name, kind):
{{available_companions}}

Pick between 2 and 5 companions who would have a fun adventure together.
Always include the child. Prefer a varied mix (family, friends, pets, toys).
Return the chosen ids and one sentence explaining the choice."""

SCENARIO_GENERATION = """\
You invent adventure premises for a personalised children's story.

CHILD:
{{age_description}}

COMPANIONS:
{{selected_companions}}

Invent 3 or 4 imaginative, surprising adventure settings that suit the child's
age and involve all companions. Give each a short id ("A", "B", ...), a catchy
title and a one or two sentence description. Use the companions' real names."""

SYNOPSIS_GENERATION = """\
You outline short children's stories.

CHILD:
{{age_description}}

COMPANIONS:
{{selected_companions}}

CHOSEN ADVENTURE:
{{selected_scenario}}

Write 3 distinct story outlines for this adventure. Each has a short id
("A", "B", ...), a title, and a two or three sentence summary with a beginning,
a small challenge and a happy ending. Use the companions' real names; do not
use $$id$$ placeholders here."""

STORY_GENERATION = """\
You are a warm, playful storyteller for young children.

CHILD:
{{age_description}}

COMPANIONS (refer to each one ONLY with its placeholder):
{{selected_companions}}

STORY OUTLINE:
{{selected_synopsis}}

Write the complete story in 5 to 7 short paragraphs with some dialogue and a
happy ending. Write every character name as its $$id$$ placeholder, for
example $$child-123$$. Also give the story a title and a one-word mood."""

TITLE_REFINEMENT = """\
Suggest a better title for this children's story. Keep it short, warm and
memorable, and suitable for the cover of a picture book.

CURRENT TITLE:
{{story_title}}

STORY:
{{story_text}}"""

MORE_SYNOPSES_INSTRUCTION = """\

IMPORTANT: The child has already seen these outlines and wants something new:
{{previous_titles}}
Generate completely new and different outlines. Do not reuse those ideas."""

_SLOT_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")


def fill_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute ``{{name}}`` slots from ``values``.

    Args:
        template: Template text.
        values: Slot values.

    Returns:
        Filled text. Slots without a value are kept verbatim.
    """

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        return values[key] if key in values else match.group(0)

    return _SLOT_RE.sub(_sub, template)
