"""Output contracts for AI model calls and their validator.

Each generation step declares a pydantic contract. The validator accepts
whatever shape the model layer returns (a contract instance, a dict, or JSON
text, possibly wrapped in a Markdown code fence) and either returns a
validated instance or raises ``OutputContractError`` listing every
violation.
"""

from __future__ import annotations

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError

from storyfriends.models import Scenario, Synopsis
from storyfriends.providers.structured_output import strip_null_values

C = TypeVar("C", bound=BaseModel)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


class CompanionProposal(BaseModel):
    """Companions the model suggests for the adventure."""

    proposed_ids: list[str] = Field(
        min_length=2, max_length=5, description="2 to 5 ids from the available list"
    )
    rationale: str = Field(default="", description="Why these companions fit together")


class ScenarioBatch(BaseModel):
    scenarios: list[Scenario] = Field(min_length=2, max_length=5)


class SynopsisBatch(BaseModel):
    synopses: list[Synopsis] = Field(min_length=2, max_length=4)


class StoryDraft(BaseModel):
    """Complete story with ``$$id$$`` placeholders for character names."""

    title: str = Field(min_length=1)
    mood: str = Field(min_length=1, description="One-word mood, e.g. magical, funny")
    text: str = Field(min_length=50, description="Story text using $$id$$ placeholders")


class TitleSuggestion(BaseModel):
    title: str = Field(min_length=1, max_length=120)


class OutputContractError(Exception):
    """Raised when model output does not satisfy its contract.

    Attributes:
        contract: Name of the contract model.
        errors: One human-readable line per violation.
    """

    def __init__(self, contract: str, errors: list[str]) -> None:
        self.contract = contract
        self.errors = errors
        super().__init__(f"{contract} output invalid: " + "; ".join(errors))


def _format_errors(error: ValidationError) -> list[str]:
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"{location}: {item['msg']}")
    return lines


def _parse_text(raw: str, contract_name: str) -> Any:
    text = raw.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise OutputContractError(contract_name, [f"<root>: not valid JSON ({e.msg})"]) from e


def validate_output(raw: Any, contract: type[C]) -> C:
    """Validate raw model output against a contract.

    Args:
        raw: Contract instance, other pydantic model, dict, or JSON text.
        contract: Expected pydantic model.

    Returns:
        A validated contract instance.

    Raises:
        OutputContractError: If the output is missing, malformed, or violates
            the contract.
    """
    name = contract.__name__
    if isinstance(raw, contract):
        return raw
    if raw is None:
        raise OutputContractError(name, ["<root>: no output returned"])
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    elif isinstance(raw, str | bytes):
        raw = _parse_text(raw.decode() if isinstance(raw, bytes) else raw, name)

    if not isinstance(raw, dict):
        raise OutputContractError(name, [f"<root>: expected an object, got {type(raw).__name__}"])

    try:
        return contract.model_validate(strip_null_values(raw))
    except ValidationError as e:
        raise OutputContractError(name, _format_errors(e)) from e
