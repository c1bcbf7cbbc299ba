"""Job harness: one cancellable, timeout-bound reconciliation run.

State machine::

    IDLE ──▶ RUNNING ──▶ SUCCEEDED
                    ├──▶ FAILED      (first error raised by the work)
                    └──▶ CANCELLED   (CancelToken, timeout, or JobCancelledError)

``run_job`` dispatches ``job.run()`` on its own asyncio task and waits for
whichever comes first: completion, failure, external cancellation or the
timeout.  On timeout or cancellation the work is not interrupted mid-record;
the token is set so the engine stops at the next record boundary, and the
task is abandoned.  The caller must not start overlapping runs of the same
job; the harness does no cross-run locking.

Each job also reports a six-field cron schedule for the external scheduler.
A configured override wins over the compiled-in default.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone

from activities.cancel import CancelToken
from activities.errors import JobCancelledError

logger = logging.getLogger("activities.jobs.harness")

DEFAULT_SCHEDULE = "0 30 * * * *"
DEFAULT_TIMEOUT_SECONDS = 30.0

# Sentinel meaning "use job.timeout"
_JOB_TIMEOUT = object()

# Abandoned tasks are kept referenced until they reach a record boundary
_abandoned: set[asyncio.Task] = set()


class JobState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)


@dataclass
class JobOutcome:
    """Tagged result of one run: success, failure(cause) or cancelled.

    Attributes:
        job_name:    Name of the job.
        status:      Terminal JobState.
        error:       The first error (FAILED) or the cancellation (CANCELLED).
        stats:       Whatever the job returned on success.
        started_at:  UTC start time.
        finished_at: UTC end time.
    """

    job_name: str
    status: JobState
    error: BaseException | None = None
    stats: dict = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is JobState.SUCCEEDED

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def describe(self) -> str:
        if self.status is JobState.SUCCEEDED:
            return f"{self.job_name} succeeded"
        return f"{self.job_name} {self.status.value}: {self.error}"


class Job(ABC):
    """Base class for every reconciliation job.

    Subclasses set ``NAME`` (and optionally ``DEFAULT_SCHEDULE`` /
    ``DEFAULT_TIMEOUT``) and implement ``run()``.
    """

    NAME: str = "job"
    DEFAULT_SCHEDULE: str = DEFAULT_SCHEDULE
    DEFAULT_TIMEOUT: float = DEFAULT_TIMEOUT_SECONDS

    def __init__(
        self,
        schedule_override: str = "",
        timeout_override: float | None = None,
    ) -> None:
        self._schedule_override = schedule_override
        self._timeout_override = timeout_override
        self.state = JobState.IDLE

    @property
    def name(self) -> str:
        return self.NAME

    @property
    def timeout(self) -> float:
        return self._timeout_override or self.DEFAULT_TIMEOUT

    def schedule(self) -> str:
        """Cron expression for the external scheduler; override wins."""
        return self._schedule_override or self.DEFAULT_SCHEDULE

    @abstractmethod
    async def run(self, cancel: CancelToken) -> dict:
        """Do the work of one run.

        Implementations check ``cancel`` between records and raise the
        package's error taxonomy on failure.

        Returns:
            Run statistics.
        """


def _abandon(task: asyncio.Task) -> None:
    """Stop waiting for ``task`` but keep it alive until it finishes."""
    if task.done():
        _reap(task)
        return
    _abandoned.add(task)
    task.add_done_callback(_reap)


def _reap(task: asyncio.Task) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None and not isinstance(exc, JobCancelledError):
        logger.warning("Abandoned job task %s ended with error: %s", task.get_name(), exc)


async def run_job(
    job: Job,
    cancel: CancelToken | None = None,
    timeout=_JOB_TIMEOUT,
) -> JobOutcome:
    """Run ``job`` once and report a tagged outcome.

    Args:
        job:     The job to run.
        cancel:  External cancellation signal.  A fresh token is used if None.
        timeout: Seconds before the run is treated as cancelled.  Defaults to
                 ``job.timeout``; None disables the limit.

    Returns:
        JobOutcome with status SUCCEEDED, FAILED or CANCELLED.  Errors are
        never raised, except that cancelling the ``run_job`` call itself
        propagates ``asyncio.CancelledError`` after signalling the token.
    """
    token = cancel or CancelToken()
    limit = job.timeout if timeout is _JOB_TIMEOUT else timeout
    outcome = JobOutcome(job_name=job.name, status=JobState.RUNNING)

    if token.cancelled:
        logger.info("Job %s: cancelled before start", job.name)
        return _finish(job, outcome, JobState.CANCELLED, JobCancelledError(token.reason or "cancelled"))

    job.state = JobState.RUNNING
    logger.info("Job %s: running (timeout=%s)", job.name, limit)

    work = asyncio.create_task(job.run(token), name=f"job:{job.name}")
    waiter = asyncio.create_task(token.wait(), name=f"cancel:{job.name}")
    try:
        done, _ = await asyncio.wait(
            {work, waiter}, timeout=limit, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        token.cancel("harness cancelled")
        _abandon(work)
        raise
    finally:
        waiter.cancel()

    if work in done:
        if work.cancelled():
            return _finish(job, outcome, JobState.CANCELLED, JobCancelledError("task cancelled"))
        exc = work.exception()
        if isinstance(exc, JobCancelledError):
            return _finish(job, outcome, JobState.CANCELLED, exc)
        if exc is not None:
            logger.error("Job %s failed: %s", job.name, exc)
            return _finish(job, outcome, JobState.FAILED, exc)
        outcome.stats = work.result() or {}
        return _finish(job, outcome, JobState.SUCCEEDED, None)

    reason = token.reason if token.cancelled else f"timed out after {limit}s"
    token.cancel(reason)
    _abandon(work)
    logger.warning("Job %s: %s; abandoning the run", job.name, reason)
    return _finish(job, outcome, JobState.CANCELLED, JobCancelledError(reason))


def _finish(
    job: Job, outcome: JobOutcome, status: JobState, error: BaseException | None
) -> JobOutcome:
    outcome.status = status
    outcome.error = error
    outcome.finished_at = datetime.now(timezone.utc)
    job.state = status
    logger.info(
        "Job %s: %s in %.2fs", job.name, status.value, outcome.duration_seconds or 0.0
    )
    return outcome


async def drain_abandoned(grace: float) -> bool:
    """Wait up to ``grace`` seconds for abandoned runs to stop.

    An abandoned run has its token set, so it finishes the record in hand
    (blob and row) and stops at the next record boundary.  Call this before
    closing the stores or the event loop.

    Returns:
        True if every abandoned run finished within ``grace``.
    """
    loop = asyncio.get_running_loop()
    pending = {t for t in _abandoned if not t.done() and t.get_loop() is loop}
    if not pending:
        return True
    logger.info("Waiting up to %.1fs for %d abandoned run(s) to stop", grace, len(pending))
    _, still_running = await asyncio.wait(pending, timeout=grace)
    if still_running:
        logger.warning(
            "%d abandoned run(s) still busy after %.1fs; stopping anyway",
            len(still_running),
            grace,
        )
    return not still_running
