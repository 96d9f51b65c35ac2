"""Background fan-out of story enrichment jobs.

All jobs start together and are awaited with an all-settle join: one job
failing never cancels its siblings, and nothing propagates to the caller.
Each outcome is returned as a ``JobResult``; failures are also logged with
the story id and job name.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from storyfriends.observability.logging import get_logger

log = get_logger(__name__)


class EnrichmentJob(Protocol):
    """One independent post-compile job."""

    name: str

    async def run(self, story_id: str) -> None:
        """Do the work for ``story_id``. Raises on failure."""
        ...


@dataclass(frozen=True)
class JobResult:
    """Outcome of one enrichment job."""

    name: str
    ok: bool
    duration_ms: int
    error: str | None = None


async def _timed(job: EnrichmentJob, story_id: str) -> int:
    start = time.perf_counter()
    await job.run(story_id)
    return round((time.perf_counter() - start) * 1000)


async def fan_out(story_id: str, jobs: Sequence[EnrichmentJob]) -> list[JobResult]:
    """Run ``jobs`` concurrently for ``story_id`` and collect every outcome.

    Args:
        story_id: Story the jobs enrich.
        jobs: Jobs to run.

    Returns:
        One JobResult per job, in the order given.
    """
    if not jobs:
        return []

    log.info("enrichment_started", story_id=story_id, jobs=[job.name for job in jobs])
    start = time.perf_counter()
    outcomes = await asyncio.gather(
        *(_timed(job, story_id) for job in jobs),
        return_exceptions=True,
    )

    results: list[JobResult] = []
    for job, outcome in zip(jobs, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                log.warning("enrichment_job_cancelled", story_id=story_id, job=job.name)
            else:
                log.error(
                    "enrichment_job_failed",
                    story_id=story_id,
                    job=job.name,
                    error=f"{type(outcome).__name__}: {outcome}",
                )
            results.append(JobResult(job.name, ok=False, duration_ms=0, error=str(outcome)))
        else:
            results.append(JobResult(job.name, ok=True, duration_ms=outcome))

    log.info(
        "enrichment_finished",
        story_id=story_id,
        succeeded=sum(1 for r in results if r.ok),
        failed=sum(1 for r in results if not r.ok),
        elapsed_ms=round((time.perf_counter() - start) * 1000),
    )
    return results
