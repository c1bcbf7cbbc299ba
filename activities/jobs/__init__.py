"""Reconciliation jobs.

Each job is a thin configuration of the shared engine, run by the harness:

    activity_poll      — insert the IDs of recent activities
    activity_sync      — refresh activity metadata (detail JSON)
    activity_original  — mirror original files via the web session
    from_export        — import activities and originals from a GDPR export
"""

from __future__ import annotations

import enum
from datetime import timedelta
from pathlib import Path

from activities.config_loader import ToolConfig
from activities.jobs.activity_original import ActivityOriginalJob
from activities.jobs.activity_poll import ActivityPollJob
from activities.jobs.activity_sync import ActivitySyncJob
from activities.jobs.from_export import FromExportJob
from activities.jobs.harness import Job, JobOutcome, JobState, drain_abandoned, run_job
from activities.services.blobstore import BlobStore
from activities.services.catalog import ActivityCatalog
from activities.strava.api import StravaClient
from activities.strava.session import StravaSession
from activities.sync.writer import DualStoreWriter

__all__ = [
    "ActivityOriginalJob",
    "ActivityPollJob",
    "ActivitySyncJob",
    "FromExportJob",
    "Job",
    "JobName",
    "JobOutcome",
    "JobState",
    "build_job",
    "drain_abandoned",
    "get_job",
    "run_job",
]


class JobName(str, enum.Enum):
    ACTIVITY_POLL = "activity_poll"
    ACTIVITY_SYNC = "activity_sync"
    ACTIVITY_ORIGINAL = "activity_original"
    FROM_EXPORT = "from_export"


# Registry: job name → job class
JOB_REGISTRY: dict[JobName, type[Job]] = {
    JobName.ACTIVITY_POLL: ActivityPollJob,
    JobName.ACTIVITY_SYNC: ActivitySyncJob,
    JobName.ACTIVITY_ORIGINAL: ActivityOriginalJob,
    JobName.FROM_EXPORT: FromExportJob,
}


def get_job(name: str | JobName) -> type[Job]:
    """Return the job class for a given name.

    Args:
        name: e.g. 'activity_poll', 'from_export'

    Returns:
        The job class (not an instance).

    Raises:
        KeyError: If the name is not registered.
    """
    try:
        return JOB_REGISTRY[JobName(name)]
    except ValueError:
        raise KeyError(
            f"No job registered as '{name}'. Available: {[n.value for n in JobName]}"
        ) from None


def build_job(
    name: str | JobName,
    config: ToolConfig,
    catalog: ActivityCatalog,
    blobs: BlobStore,
    export_dir: str | Path | None = None,
    strava_client: StravaClient | None = None,
    session: StravaSession | None = None,
) -> Job:
    """Wire a job from the tool config and the two stores.

    ``strava_client`` and ``session`` may be injected (tests); otherwise
    they are built from ``config.strava``.

    Raises:
        KeyError:   Unknown job name.
        ValueError: ``from_export`` without ``export_dir``.
    """
    get_job(name)
    job_name = JobName(name)

    job_config = config.job(job_name.value)
    overrides = {
        "schedule_override": job_config.schedule,
        "timeout_override": job_config.timeout_seconds,
    }
    writer = DualStoreWriter(catalog, blobs)
    strava = config.strava

    if job_name is JobName.ACTIVITY_POLL:
        return ActivityPollJob(
            strava_client or _client_from(config),
            catalog,
            per_page=config.sync.listing_page_size,
            **overrides,
        )
    if job_name is JobName.ACTIVITY_SYNC:
        return ActivitySyncJob(
            strava_client or _client_from(config),
            catalog,
            writer,
            window=timedelta(days=config.sync.data_window_days),
            **overrides,
        )
    if job_name is JobName.ACTIVITY_ORIGINAL:
        return ActivityOriginalJob(
            session or StravaSession(strava.host, strava.email, strava.password),
            catalog,
            writer,
            window=timedelta(days=config.sync.original_window_days),
            **overrides,
        )

    if not export_dir:
        raise ValueError("from_export requires an export directory")
    return FromExportJob(export_dir, catalog, writer, **overrides)


def _client_from(config: ToolConfig) -> StravaClient:
    return StravaClient(
        client_id=config.strava.client_id,
        client_secret=config.strava.client_secret,
        refresh_token=config.strava.refresh_token,
    )
