"""Tests for AI output contracts and the validator."""

from __future__ import annotations

import pytest

from storyfriends.ai.contracts import (
    CompanionProposal,
    OutputContractError,
    ScenarioBatch,
    StoryDraft,
    SynopsisBatch,
    TitleSuggestion,
    validate_output,
)

_TEXT = "A long enough story about friends who sail the sky on a boat made of moonlight."


class TestValidateOutput:
    """Tests for validate_output."""

    def test_accepts_dict(self) -> None:
        result = validate_output({"title": "T", "mood": "happy", "text": _TEXT}, StoryDraft)
        assert result.title == "T"

    def test_accepts_contract_instance(self) -> None:
        draft = StoryDraft(title="T", mood="calm", text=_TEXT)
        assert validate_output(draft, StoryDraft) is draft

    def test_accepts_fenced_json(self) -> None:
        """JSON wrapped in a Markdown fence is unwrapped."""
        raw = '```json\n{"title": "Moon Boat"}\n```'
        assert validate_output(raw, TitleSuggestion).title == "Moon Boat"

    def test_accepts_bytes(self) -> None:
        assert validate_output(b'{"title": "Moon Boat"}', TitleSuggestion).title == "Moon Boat"

    def test_nulls_fall_back_to_defaults(self) -> None:
        """Explicit nulls from a model are treated as absent."""
        result = validate_output(
            {"proposed_ids": ["a", "b"], "rationale": None}, CompanionProposal
        )
        assert result.rationale == ""

    def test_missing_output(self) -> None:
        with pytest.raises(OutputContractError, match="no output returned"):
            validate_output(None, TitleSuggestion)

    def test_invalid_json(self) -> None:
        with pytest.raises(OutputContractError) as exc_info:
            validate_output("{not json", TitleSuggestion)
        assert exc_info.value.contract == "TitleSuggestion"
        assert "not valid JSON" in exc_info.value.errors[0]

    def test_non_object(self) -> None:
        with pytest.raises(OutputContractError, match="expected an object"):
            validate_output("[1, 2]", TitleSuggestion)

    def test_lists_every_violation(self) -> None:
        """Each violated field is reported on its own line."""
        with pytest.raises(OutputContractError) as exc_info:
            validate_output({"title": "", "mood": "", "text": "short"}, StoryDraft)
        locations = [line.split(":")[0] for line in exc_info.value.errors]
        assert sorted(locations) == ["mood", "text", "title"]


class TestContractBounds:
    """Size bounds on generated option lists."""

    def test_scenario_batch_needs_two(self) -> None:
        with pytest.raises(OutputContractError):
            validate_output(
                {"scenarios": [{"id": "A", "title": "One", "description": "Only one."}]},
                ScenarioBatch,
            )

    def test_synopsis_batch_caps_at_four(self) -> None:
        synopses = [{"id": str(i), "title": f"T{i}", "summary": "S"} for i in range(5)]
        with pytest.raises(OutputContractError):
            validate_output({"synopses": synopses}, SynopsisBatch)

    def test_companion_proposal_needs_two(self) -> None:
        with pytest.raises(OutputContractError):
            validate_output({"proposed_ids": ["child-1"]}, CompanionProposal)

    def test_companion_proposal_caps_at_five(self) -> None:
        with pytest.raises(OutputContractError):
            validate_output({"proposed_ids": list("abcdef")}, CompanionProposal)

    def test_nested_option_fields_required(self) -> None:
        """Blank option titles are rejected."""
        with pytest.raises(OutputContractError) as exc_info:
            validate_output(
                {
                    "scenarios": [
                        {"id": "A", "title": "", "description": "D"},
                        {"id": "B", "title": "T", "description": "D"},
                    ]
                },
                ScenarioBatch,
            )
        assert exc_info.value.errors[0].startswith("scenarios.0.title")
