"""Story workflow: phases, compile locking, and post-compile enrichment."""

from storyfriends.workflow.compile_service import CompileOutcome, CompileService
from storyfriends.workflow.compiler import StoryCompiler
from storyfriends.workflow.enrichment import AvatarJob, NarrationJob, StatusTrackedJob, TitleJob
from storyfriends.workflow.entities import EntityDirectory
from storyfriends.workflow.fanout import EnrichmentJob, JobResult, fan_out
from storyfriends.workflow.lock import CompileLockManager, LockAcquisition
from storyfriends.workflow.sessions import create_session, load_session, load_story
from storyfriends.workflow.state_machine import AdvanceRequest, PhaseStateMachine

__all__ = [
    "AdvanceRequest",
    "AvatarJob",
    "CompileLockManager",
    "CompileOutcome",
    "CompileService",
    "EnrichmentJob",
    "EntityDirectory",
    "JobResult",
    "LockAcquisition",
    "NarrationJob",
    "PhaseStateMachine",
    "StatusTrackedJob",
    "StoryCompiler",
    "TitleJob",
    "create_session",
    "fan_out",
    "load_session",
    "load_story",
]
