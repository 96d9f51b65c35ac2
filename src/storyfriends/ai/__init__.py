"""AI model invocation and output contracts."""

from storyfriends.ai.contracts import (
    CompanionProposal,
    OutputContractError,
    ScenarioBatch,
    StoryDraft,
    SynopsisBatch,
    TitleSuggestion,
    validate_output,
)
from storyfriends.ai.invoker import AIInvoker

__all__ = [
    "AIInvoker",
    "CompanionProposal",
    "OutputContractError",
    "ScenarioBatch",
    "StoryDraft",
    "SynopsisBatch",
    "TitleSuggestion",
    "validate_output",
]
