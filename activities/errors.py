"""Error taxonomy for activity reconciliation runs.

A run reports success, a single failure cause, or cancellation.  Library
exceptions (httpx, botocore, asyncpg, OSError) are wrapped into one of the
classes below at the module boundary where they occur, so the job harness
only needs to understand this hierarchy.
"""

from __future__ import annotations


class ActivitiesError(Exception):
    """Base class for every error raised by this package."""


class AuthError(ActivitiesError):
    """Credential exchange or session login failed.  Fatal for the run."""


class SourceFetchError(ActivitiesError):
    """A listing, detail or export call returned an unexpected status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ActivityNotFoundError(SourceFetchError):
    """The provider no longer knows this activity.

    Raised for a single record and handled by the engine as a soft skip:
    the upstream activity may simply have been deleted.
    """

    def __init__(self, activity_id: int) -> None:
        super().__init__(f"activity {activity_id} not found", status_code=404)
        self.activity_id = activity_id


class StorageError(ActivitiesError):
    """Blob store or catalog I/O failed.  Safe to retry on the next run."""


class JobCancelledError(ActivitiesError):
    """The run was aborted by the caller or by its timeout."""
