"""Relational catalog of mirrored activities (PostgreSQL via asyncpg).

One table, ``activities.activities``, keyed by the external activity ID::

    id               BIGINT PRIMARY KEY
    source           TEXT NOT NULL            -- 'polling' | 'export'
    data_digest      TEXT NOT NULL DEFAULT ''
    original_digest  TEXT NOT NULL DEFAULT ''
    original_format  TEXT                     -- fit | gpx | tcx | unknown | missing
    type             TEXT
    gear_id          TEXT
    timestamp        TIMESTAMPTZ
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()

Schema migrations are managed outside this package.  Every method here is a
single statement, so each record's update is atomic on its own and there is
no multi-record transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable

import asyncpg

from activities.config import Settings, get_settings
from activities.errors import StorageError
from activities.sync.models import (
    ActivityMetadata,
    ActivityRecord,
    Candidate,
    OriginalFormat,
    SourceKind,
)

logger = logging.getLogger("activities.db")

TABLE = "activities.activities"

_COLUMNS = (
    "id, source, data_digest, original_digest, original_format, "
    "type, gear_id, timestamp, created_at"
)

# Shared pool, created by init_pool() before any job runs
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool.  Call once at startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=s.db_command_timeout,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)",
        s.db_pool_min_size,
        s.db_pool_max_size,
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool.  Call at shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("catalog pool is not open; call init_pool() first")
    return _pool


def _parse_status_count(status: str) -> int:
    """Extract the row count from a command tag like ``INSERT 0 3``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError, AttributeError):
        return 0


def _row_to_record(row) -> ActivityRecord:
    fmt = row["original_format"]
    return ActivityRecord(
        id=int(row["id"]),
        source=SourceKind(row["source"]),
        data_digest=row["data_digest"] or "",
        original_digest=row["original_digest"] or "",
        original_format=OriginalFormat(fmt) if fmt else None,
        type=row["type"],
        gear_id=row["gear_id"],
        timestamp=row["timestamp"],
        created_at=row["created_at"],
    )


class ActivityCatalog:
    """Repository over the ``activities.activities`` table.

    Usage::

        catalog = ActivityCatalog(get_pool())
        inserted = await catalog.insert_candidates(candidates)
        rows = await catalog.select_data_candidates(timedelta(days=10))
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    async def _execute(self, query: str, *args) -> str:
        try:
            async with self._pool.acquire() as conn:
                return await conn.execute(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise StorageError(f"catalog write failed: {exc}") from exc

    async def _fetch(self, query: str, *args) -> list:
        try:
            async with self._pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise StorageError(f"catalog read failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    async def insert_candidates(self, candidates: Iterable[Candidate]) -> int:
        """Insert candidate IDs, ignoring ones that already exist.

        First writer wins: ``source`` is never overwritten.

        Returns:
            Number of newly inserted rows.
        """
        ids: list[int] = []
        sources: list[str] = []
        for candidate in candidates:
            ids.append(candidate.id)
            sources.append(candidate.source.value)
        if not ids:
            return 0

        status = await self._execute(
            f"INSERT INTO {TABLE} (id, source) "
            "SELECT * FROM unnest($1::bigint[], $2::text[]) "
            "ON CONFLICT (id) DO NOTHING",
            ids,
            sources,
        )
        inserted = _parse_status_count(status)
        logger.info("New activities: %d (of %d candidates)", inserted, len(ids))
        return inserted

    # ------------------------------------------------------------------
    # Candidate selection
    # ------------------------------------------------------------------

    async def select_data_candidates(
        self, window: timedelta, now: datetime | None = None
    ) -> list[ActivityRecord]:
        """Rows due for a metadata re-check, ascending by ID."""
        cutoff = (now or datetime.now(timezone.utc)) - window
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM {TABLE} "
            "WHERE data_digest = '' OR created_at > $1 "
            "ORDER BY id ASC",
            cutoff,
        )
        return [_row_to_record(r) for r in rows]

    async def select_original_candidates(
        self, window: timedelta, now: datetime | None = None
    ) -> list[ActivityRecord]:
        """Rows due for an original re-check, ascending by ID.

        Rows already marked ``missing`` are always excluded.
        """
        cutoff = (now or datetime.now(timezone.utc)) - window
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM {TABLE} "
            "WHERE (original_digest = '' OR created_at > $1) "
            "AND original_format IS DISTINCT FROM 'missing' "
            "ORDER BY id ASC",
            cutoff,
        )
        return [_row_to_record(r) for r in rows]

    async def get(self, activity_id: int) -> ActivityRecord | None:
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM {TABLE} WHERE id = $1", activity_id
        )
        return _row_to_record(rows[0]) if rows else None

    # ------------------------------------------------------------------
    # Targeted updates
    # ------------------------------------------------------------------

    async def update_data(
        self, activity_id: int, digest: str, metadata: ActivityMetadata
    ) -> None:
        """Record a new metadata digest and refresh the denormalized columns."""
        await self._execute(
            f"UPDATE {TABLE} SET data_digest = $2, type = $3, gear_id = $4, "
            "timestamp = $5 WHERE id = $1",
            activity_id,
            digest,
            metadata.type,
            metadata.gear_id,
            metadata.timestamp,
        )

    async def update_original(
        self, activity_id: int, digest: str, fmt: OriginalFormat
    ) -> None:
        """Record a new original digest and format."""
        await self._execute(
            f"UPDATE {TABLE} SET original_digest = $2, original_format = $3 "
            "WHERE id = $1",
            activity_id,
            digest,
            fmt.value,
        )

    async def mark_original_missing(self, activity_id: int) -> bool:
        """Mark an activity as having no original.

        Returns:
            True if the row transitioned, False if it was already missing.
        """
        status = await self._execute(
            f"UPDATE {TABLE} SET original_format = 'missing' "
            "WHERE id = $1 AND original_format IS DISTINCT FROM 'missing'",
            activity_id,
        )
        return _parse_status_count(status) > 0
