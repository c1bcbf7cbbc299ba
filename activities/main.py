"""Activities mirror — command-line entry point.

Runs one reconciliation job and exits.  An external scheduler (cron, a
Kubernetes CronJob, ...) invokes it using each job's ``schedule()``.

Run locally:
    python -m activities.main activity_poll
    python -m activities.main from_export --export-dir ./export_12345

Exit codes: 0 succeeded, 1 failed, 2 cancelled.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from activities.cancel import CancelToken
from activities.config import get_settings
from activities.config_loader import ConfigValidationError, load_tool_config
from activities.jobs import JobName, JobState, build_job, drain_abandoned, run_job
from activities.services.blobstore import BlobStore
from activities.services.catalog import ActivityCatalog, close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("activities")

EXIT_CODES = {
    JobState.SUCCEEDED: 0,
    JobState.FAILED: 1,
    JobState.CANCELLED: 2,
}


def _install_signal_handlers(token: CancelToken) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel, f"received {sig.name}")
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass


async def run(
    job_name: JobName,
    export_dir: Path | None = None,
    config_path: Path | None = None,
) -> JobState:
    """Load configuration, open both stores and run one job."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(
        "Starting %s v%s [%s] job=%s",
        settings.app_name,
        settings.app_version,
        settings.environment,
        job_name.value,
    )

    tool_config = load_tool_config(config_path)
    pool = await init_pool(settings)
    try:
        job = build_job(
            job_name,
            tool_config,
            ActivityCatalog(pool),
            BlobStore.from_config(tool_config.storage),
            export_dir=export_dir,
        )
        token = CancelToken()
        _install_signal_handlers(token)
        outcome = await run_job(job, cancel=token)
    finally:
        # let an abandoned run finish its current record before the pool closes
        await drain_abandoned(settings.shutdown_grace_seconds)
        await close_pool()

    if outcome.succeeded:
        logger.info("%s: %s", outcome.describe(), outcome.stats)
    else:
        logger.error(outcome.describe())
    return outcome.status


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="activities",
        description="Mirror activity metadata and original files to Postgres and object storage.",
    )
    parser.add_argument("job", choices=[name.value for name in JobName], help="job to run")
    parser.add_argument(
        "--export-dir",
        type=Path,
        default=None,
        help="unpacked GDPR export directory (from_export only)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="tool config YAML (default: $ACTIVITIES_TOOL_CONFIG_PATH or config.yaml)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    job_name = JobName(args.job)
    if job_name is JobName.FROM_EXPORT and args.export_dir is None:
        logger.error("from_export requires --export-dir")
        return 1

    try:
        status = asyncio.run(run(job_name, args.export_dir, args.config))
    except (ConfigValidationError, FileNotFoundError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1
    return EXIT_CODES.get(status, 1)


if __name__ == "__main__":
    sys.exit(main())
