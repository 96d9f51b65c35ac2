"""Phase state machine for the story friends workflow.

A session moves forward through five persisted phases::

    character_selection -> scenario_selection -> synopsis_selection
        -> story_generation -> complete

Each ``advance`` call reads the persisted session, runs the branch for its
phase and the caller's action, writes back only the fields that branch
computes, and returns a phase output. Confirming a choice immediately runs
the next phase's generation, so callers never see an idle "confirmed" state.

The persisted phase moves only after the generation for the new phase
succeeded. Any failure is returned as an ``error`` output and leaves the
phase where it was, so a retry resumes at the same step. Selecting a
synopsis holds ``story_generation`` only while the compile runs; a failed
compile puts the session back in ``synopsis_selection``. The one explicit
cycle is ``change_companions``, which rewinds to companion selection and
discards downstream choices.
"""

from __future__ import annotations

import string
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar, assert_never

from storyfriends.ai.contracts import CompanionProposal, ScenarioBatch, SynopsisBatch
from storyfriends.config import PromptKey, WorkflowSettings
from storyfriends.errors import (
    AIInvocationError,
    InputError,
    InvalidActionError,
    MissingPrerequisiteError,
    UnknownOptionError,
    WorkflowError,
)
from storyfriends.models import (
    Action,
    CharacterSelectionOutput,
    ErrorKind,
    ErrorOutput,
    FinishedOutput,
    Phase,
    PhaseOutput,
    Scenario,
    ScenarioSelectionOutput,
    Synopsis,
    SynopsisSelectionOutput,
)
from storyfriends.observability.logging import get_logger
from storyfriends.prompts import MORE_SYNOPSES_INSTRUCTION, fill_template
from storyfriends.workflow.compile_service import INTERNAL_ERROR_MESSAGE
from storyfriends.workflow.entities import (
    age_description,
    clean_ids,
    companion_option,
    describe_entities,
)
from storyfriends.workflow.sessions import load_session, load_story, update_session

if TYPE_CHECKING:
    from storyfriends.ai.invoker import AIInvoker
    from storyfriends.config import GeneratorConfig
    from storyfriends.models import ChildProfile, Session, Story
    from storyfriends.store.base import DocumentStore
    from storyfriends.workflow.compile_service import CompileService
    from storyfriends.workflow.entities import EntityDirectory

log = get_logger(__name__)

O = TypeVar("O", Scenario, Synopsis)

_CLEARED_DOWNSTREAM: dict[str, Any] = {
    "scenarios": [],
    "selected_scenario_id": None,
    "synopses": [],
    "selected_synopsis_id": None,
}


@dataclass
class AdvanceRequest:
    """One caller action against a session.

    Attributes:
        session_id: Session to advance.
        child_id: Primary child; must match the session's child when given.
        action: Optional explicit action.
        selected_companion_ids: Caller's companion choice for ``confirm_companions``.
        selected_option_id: Chosen scenario or synopsis id, depending on phase.
        output_style_id: Output style recorded on the story at compile.
        request_id: Correlation id, recorded on the compile lock.
    """

    session_id: str
    child_id: str | None = None
    action: Action | None = None
    selected_companion_ids: list[str] | None = None
    selected_option_id: str | None = None
    output_style_id: str | None = None
    request_id: str | None = None


def _unique_option_ids(options: list[O]) -> list[O]:
    """Re-letter options when the model returned blank or duplicate ids."""
    ids = [option.id.strip() for option in options]
    if all(ids) and len(set(ids)) == len(ids):
        return [
            option.model_copy(update={"id": oid})
            for option, oid in zip(options, ids, strict=True)
        ]
    letters = string.ascii_uppercase
    return [
        option.model_copy(update={"id": letters[i] if i < len(letters) else str(i + 1)})
        for i, option in enumerate(options)
    ]


def _finished(story: Story, *, already_completed: bool, fresh: bool) -> FinishedOutput:
    return FinishedOutput(
        story_id=story.id,
        title=story.title,
        mood=story.mood,
        text=story.text,
        participant_ids=story.participant_ids,
        already_completed=already_completed,
        fresh=fresh,
    )


class PhaseStateMachine:
    """Drives a session through the story workflow, one action at a time."""

    def __init__(
        self,
        store: DocumentStore,
        invoker: AIInvoker,
        config: GeneratorConfig,
        compile_service: CompileService,
        entities: EntityDirectory,
        settings: WorkflowSettings | None = None,
    ) -> None:
        self._store = store
        self._invoker = invoker
        self._config = config
        self._compile_service = compile_service
        self._entities = entities
        self._settings = settings or WorkflowSettings()

    async def advance(self, request: AdvanceRequest) -> PhaseOutput:
        """Apply one action to a session and return the resulting phase output.

        Never raises: every failure is returned as an ``ErrorOutput``.
        """
        try:
            return await self._advance(request)
        except AIInvocationError as e:
            # Details are already in the AI trace store
            log.error(
                "phase_generation_failed",
                session_id=request.session_id,
                flow=e.flow_name,
                error=str(e),
            )
            return ErrorOutput(error=e.public_message, kind=ErrorKind.UPSTREAM)
        except WorkflowError as e:
            log.info(
                "phase_request_rejected",
                session_id=request.session_id,
                kind=e.kind.value,
                error=e.message,
            )
            return ErrorOutput(error=e.message, kind=e.kind)
        except Exception as e:
            log.error(
                "phase_advance_failed",
                session_id=request.session_id,
                error=f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            return ErrorOutput(error=INTERNAL_ERROR_MESSAGE, kind=ErrorKind.INTERNAL)

    async def _advance(self, request: AdvanceRequest) -> PhaseOutput:
        session = await load_session(self._store, request.session_id)
        if request.child_id and request.child_id != session.child_id:
            raise InputError("This session belongs to a different child")

        log.debug(
            "phase_advance",
            session_id=session.id,
            phase=session.phase,
            action=request.action,
            has_option=bool(request.selected_option_id),
        )

        phase = session.phase
        if phase is None:
            return await self._propose_companions(session)

        match phase:
            case Phase.CHARACTER_SELECTION:
                return await self._character_selection(session, request)
            case Phase.SCENARIO_SELECTION:
                return await self._scenario_selection(session, request)
            case Phase.SYNOPSIS_SELECTION:
                return await self._synopsis_selection(session, request)
            case Phase.STORY_GENERATION:
                self._reject_actions(request, phase)
                return await self._compile(session, request)
            case Phase.COMPLETE:
                self._reject_actions(request, phase)
                return await self._serve_story(session, request)
            case _:
                assert_never(phase)

    @staticmethod
    def _reject_actions(request: AdvanceRequest, phase: Phase, *allowed: Action) -> None:
        if request.action is not None and request.action not in allowed:
            raise InvalidActionError(request.action.value, phase.value)

    # -- character_selection -------------------------------------------------

    async def _character_selection(
        self, session: Session, request: AdvanceRequest
    ) -> PhaseOutput:
        self._reject_actions(
            request, Phase.CHARACTER_SELECTION, Action.CONFIRM_COMPANIONS, Action.CHANGE_COMPANIONS
        )
        if request.action == Action.CONFIRM_COMPANIONS:
            return await self._confirm_companions(session, request)
        if request.action is None and session.proposed_companion_ids:
            child = await self._entities.load_child(session.child_id)
            roster = await self._entities.eligible_roster(child)
            return CharacterSelectionOutput(
                companions=[companion_option(e) for e in roster],
                proposed_companion_ids=session.proposed_companion_ids,
            )
        return await self._propose_companions(session)

    async def _propose_companions(self, session: Session) -> CharacterSelectionOutput:
        child = await self._entities.load_child(session.child_id)
        roster = await self._entities.eligible_roster(child)
        roster_ids = {entity.id for entity in roster}

        suggested: list[str] = []
        if len(roster) < 2:
            # Nobody to pair with; the proposal is the child alone
            log.info("companion_proposal_skipped", session_id=session.id, roster_size=len(roster))
        else:
            settings = self._config.resolve(PromptKey.COMPANION_PROPOSAL)
            prompt = fill_template(
                settings.prompt,
                {
                    "age_description": age_description(child),
                    "available_companions": describe_entities(roster),
                },
            )
            proposal = await self._invoker.generate(
                flow_name="friends:companions",
                prompt=prompt,
                model=settings.model,
                temperature=settings.temperature,
                contract=CompanionProposal,
                session_id=session.id,
                parent_uid=session.parent_uid,
            )
            suggested = clean_ids(proposal.proposed_ids)

        dropped = [cid for cid in suggested if cid not in roster_ids]
        if dropped:
            log.warning("companion_proposal_unknown_ids", session_id=session.id, ids=dropped)
        proposed = [child.id] + [cid for cid in suggested if cid in roster_ids and cid != child.id]

        await update_session(
            self._store,
            session.id,
            {"phase": Phase.CHARACTER_SELECTION.value, "proposed_companion_ids": proposed},
        )
        log.info("companions_proposed", session_id=session.id, count=len(proposed))
        return CharacterSelectionOutput(
            companions=[companion_option(e) for e in roster],
            proposed_companion_ids=proposed,
        )

    async def _confirm_companions(
        self, session: Session, request: AdvanceRequest
    ) -> ScenarioSelectionOutput:
        child = await self._entities.load_child(session.child_id)
        roster = await self._entities.eligible_roster(child)
        roster_ids = {entity.id for entity in roster}

        requested = clean_ids(request.selected_companion_ids)
        candidates = requested or clean_ids(session.proposed_companion_ids)
        dropped = [cid for cid in candidates if cid not in roster_ids]
        if dropped:
            log.warning("companion_selection_unknown_ids", session_id=session.id, ids=dropped)
        selection = [cid for cid in candidates if cid in roster_ids]
        if child.id not in selection:
            selection.insert(0, child.id)

        await update_session(
            self._store,
            session.id,
            {"selected_companion_ids": selection, **_CLEARED_DOWNSTREAM},
        )
        log.info("companions_confirmed", session_id=session.id, count=len(selection))
        return await self._generate_scenarios(session, child, selection)

    async def _rewind_to_companions(self, session: Session) -> CharacterSelectionOutput:
        child = await self._entities.load_child(session.child_id)
        roster = await self._entities.eligible_roster(child)
        current = clean_ids(session.selected_companion_ids) or clean_ids(
            session.proposed_companion_ids
        )
        await update_session(
            self._store,
            session.id,
            {
                "phase": Phase.CHARACTER_SELECTION.value,
                "proposed_companion_ids": current,
                **_CLEARED_DOWNSTREAM,
            },
        )
        log.info("phase_rewound", session_id=session.id, from_phase=session.phase)
        return CharacterSelectionOutput(
            companions=[companion_option(e) for e in roster],
            proposed_companion_ids=current,
        )

    # -- scenario_selection ----------------------------------------------------

    async def _scenario_selection(self, session: Session, request: AdvanceRequest) -> PhaseOutput:
        self._reject_actions(request, Phase.SCENARIO_SELECTION, Action.CHANGE_COMPANIONS)
        if request.action == Action.CHANGE_COMPANIONS:
            return await self._rewind_to_companions(session)

        option_id = (request.selected_option_id or "").strip()
        if option_id:
            available = [s.id for s in session.scenarios]
            if option_id not in available:
                raise UnknownOptionError(option_id, available)
            await update_session(self._store, session.id, {"selected_scenario_id": option_id})
            chosen = session.model_copy(update={"selected_scenario_id": option_id})
            log.info("scenario_selected", session_id=session.id, scenario_id=option_id)
            return await self._generate_synopses(chosen, more=False)

        if session.scenarios:
            return ScenarioSelectionOutput(
                selected_companion_ids=session.selected_companion_ids,
                scenarios=session.scenarios,
            )
        child = await self._entities.load_child(session.child_id)
        return await self._generate_scenarios(
            session, child, clean_ids(session.selected_companion_ids)
        )

    async def _generate_scenarios(
        self, session: Session, child: ChildProfile, selected_ids: list[str]
    ) -> ScenarioSelectionOutput:
        if not selected_ids:
            raise MissingPrerequisiteError(
                "companions", "Choose who comes along before picking an adventure"
            )
        entity_map = await self._entities.resolve(selected_ids)

        settings = self._config.resolve(PromptKey.SCENARIO_GENERATION)
        prompt = fill_template(
            settings.prompt,
            {
                "age_description": age_description(child),
                "selected_companions": describe_entities(entity_map.values()),
            },
        )
        batch = await self._invoker.generate(
            flow_name="friends:scenarios",
            prompt=prompt,
            model=settings.model,
            temperature=settings.temperature,
            contract=ScenarioBatch,
            session_id=session.id,
            parent_uid=session.parent_uid,
        )
        scenarios = _unique_option_ids(batch.scenarios)

        await update_session(
            self._store,
            session.id,
            {
                **_CLEARED_DOWNSTREAM,
                "phase": Phase.SCENARIO_SELECTION.value,
                "scenarios": [s.model_dump() for s in scenarios],
            },
        )
        log.info("phase_advanced", session_id=session.id, phase=Phase.SCENARIO_SELECTION.value)
        return ScenarioSelectionOutput(selected_companion_ids=selected_ids, scenarios=scenarios)

    # -- synopsis_selection ----------------------------------------------------

    async def _synopsis_selection(self, session: Session, request: AdvanceRequest) -> PhaseOutput:
        self._reject_actions(
            request, Phase.SYNOPSIS_SELECTION, Action.CHANGE_COMPANIONS, Action.MORE_SYNOPSES
        )
        if request.action == Action.CHANGE_COMPANIONS:
            return await self._rewind_to_companions(session)
        if request.action == Action.MORE_SYNOPSES:
            return await self._generate_synopses(session, more=True)

        option_id = (request.selected_option_id or "").strip()
        if option_id:
            available = [s.id for s in session.synopses]
            if option_id not in available:
                raise UnknownOptionError(option_id, available)
            updates: dict[str, Any] = {
                "selected_synopsis_id": option_id,
                "phase": Phase.STORY_GENERATION.value,
            }
            if request.output_style_id:
                updates["output_style_id"] = request.output_style_id
            await update_session(self._store, session.id, updates)
            log.info("synopsis_selected", session_id=session.id, synopsis_id=option_id)
            output = await self._compile(session, request)
            if isinstance(output, ErrorOutput) and not output.in_progress:
                # Back to the choice so the child can retry, pick again or ask for more
                await update_session(
                    self._store, session.id, {"phase": Phase.SYNOPSIS_SELECTION.value}
                )
                log.info(
                    "phase_rolled_back",
                    session_id=session.id,
                    phase=Phase.SYNOPSIS_SELECTION.value,
                    kind=output.kind.value,
                )
            return output

        if session.synopses:
            return SynopsisSelectionOutput(
                scenario=session.selected_scenario(), synopses=session.synopses
            )
        return await self._generate_synopses(session, more=False)

    async def _generate_synopses(self, session: Session, *, more: bool) -> SynopsisSelectionOutput:
        scenario = session.selected_scenario()
        if scenario is None:
            raise MissingPrerequisiteError(
                "scenario", "Choose an adventure before picking a story"
            )
        selected_ids = clean_ids(session.selected_companion_ids)
        if not selected_ids:
            raise MissingPrerequisiteError(
                "companions", "Choose who comes along before picking a story"
            )
        child = await self._entities.load_child(session.child_id)
        entity_map = await self._entities.resolve(selected_ids)

        settings = self._config.resolve(PromptKey.SYNOPSIS_GENERATION)
        prompt = fill_template(
            settings.prompt,
            {
                "age_description": age_description(child),
                "selected_companions": describe_entities(entity_map.values()),
                "selected_scenario": f"{scenario.title}: {scenario.description}",
            },
        )
        temperature = settings.temperature
        if more:
            temperature = min(
                temperature + self._settings.synopsis_temperature_boost,
                self._settings.max_temperature,
            )
            previous = "\n".join(f"- {s.title}" for s in session.synopses) or "- (none yet)"
            prompt += fill_template(MORE_SYNOPSES_INSTRUCTION, {"previous_titles": previous})

        batch = await self._invoker.generate(
            flow_name="friends:synopses",
            prompt=prompt,
            model=settings.model,
            temperature=temperature,
            contract=SynopsisBatch,
            session_id=session.id,
            parent_uid=session.parent_uid,
        )
        synopses = _unique_option_ids(batch.synopses)

        # Replace wholesale; a previous selection refers to a discarded batch
        await update_session(
            self._store,
            session.id,
            {
                "phase": Phase.SYNOPSIS_SELECTION.value,
                "synopses": [s.model_dump() for s in synopses],
                "selected_synopsis_id": None,
            },
        )
        log.info(
            "phase_advanced",
            session_id=session.id,
            phase=Phase.SYNOPSIS_SELECTION.value,
            more=more,
            temperature=temperature,
        )
        return SynopsisSelectionOutput(scenario=scenario, synopses=synopses)

    # -- story_generation / complete -------------------------------------------

    async def _compile(self, session: Session, request: AdvanceRequest) -> PhaseOutput:
        outcome = await self._compile_service.compile(
            session.id,
            output_style_id=request.output_style_id,
            request_id=request.request_id,
        )
        if outcome.ok and outcome.story is not None:
            return _finished(
                outcome.story, already_completed=outcome.already_completed, fresh=outcome.fresh
            )
        if outcome.already_in_progress:
            return ErrorOutput(
                error=outcome.error_message or "Story is already being created",
                kind=ErrorKind.CONFLICT,
                in_progress=True,
            )
        return ErrorOutput(
            error=outcome.error_message or INTERNAL_ERROR_MESSAGE,
            kind=outcome.error_kind or ErrorKind.INTERNAL,
        )

    async def _serve_story(self, session: Session, request: AdvanceRequest) -> PhaseOutput:
        story = await load_story(self._store, session.id)
        if story is None:
            # Marked complete without a story document; compile it again
            log.warning("story_missing_for_complete_session", session_id=session.id)
            return await self._compile(session, request)
        return _finished(story, already_completed=True, fresh=False)
