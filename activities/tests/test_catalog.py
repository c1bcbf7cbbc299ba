"""Tests for the asyncpg-backed activity catalog."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from activities.errors import StorageError
from activities.services.catalog import ActivityCatalog, _parse_status_count
from activities.sync.models import ActivityMetadata, Candidate, OriginalFormat, SourceKind

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_pool(execute_result: str = "UPDATE 1", rows: list | None = None):
    """Pool mock whose acquire() yields a connection with async execute/fetch."""
    conn = MagicMock()
    conn.execute = AsyncMock(return_value=execute_result)
    conn.fetch = AsyncMock(return_value=rows or [])

    @asynccontextmanager
    async def acquire():
        yield conn

    pool = MagicMock()
    pool.acquire = acquire
    return pool, conn


def db_row(**overrides) -> dict:
    row = {
        "id": 42,
        "source": "polling",
        "data_digest": "",
        "original_digest": "",
        "original_format": None,
        "type": None,
        "gear_id": None,
        "timestamp": None,
        "created_at": NOW,
    }
    row.update(overrides)
    return row


class TestInsert:
    @pytest.mark.asyncio
    async def test_insert_uses_on_conflict_do_nothing(self) -> None:
        pool, conn = make_pool(execute_result="INSERT 0 2")
        catalog = ActivityCatalog(pool)

        inserted = await catalog.insert_candidates(
            [
                Candidate(id=1, source=SourceKind.POLLING),
                Candidate(id=2, source=SourceKind.POLLING),
                Candidate(id=3, source=SourceKind.POLLING),
            ]
        )

        assert inserted == 2
        query, ids, sources = conn.execute.await_args.args
        assert "ON CONFLICT (id) DO NOTHING" in query
        assert ids == [1, 2, 3]
        assert sources == ["polling", "polling", "polling"]

    @pytest.mark.asyncio
    async def test_empty_insert_skips_database(self) -> None:
        pool, conn = make_pool()
        assert await ActivityCatalog(pool).insert_candidates([]) == 0
        conn.execute.assert_not_awaited()


class TestSelect:
    @pytest.mark.asyncio
    async def test_data_candidates_cutoff_and_order(self) -> None:
        pool, conn = make_pool(rows=[db_row(id=1), db_row(id=2, data_digest="abcd1234")])

        records = await ActivityCatalog(pool).select_data_candidates(timedelta(days=10), now=NOW)

        query, cutoff = conn.fetch.await_args.args
        assert "WHERE data_digest = '' OR created_at > $1" in query
        assert "ORDER BY id ASC" in query
        assert cutoff == NOW - timedelta(days=10)
        assert [r.id for r in records] == [1, 2]
        assert records[1].data_digest == "abcd1234"

    @pytest.mark.asyncio
    async def test_original_candidates_exclude_missing(self) -> None:
        pool, conn = make_pool(rows=[db_row(original_format="fit")])

        records = await ActivityCatalog(pool).select_original_candidates(timedelta(days=5), now=NOW)

        query, cutoff = conn.fetch.await_args.args
        assert "WHERE (original_digest = '' OR created_at > $1)" in query
        assert "IS DISTINCT FROM 'missing'" in query
        assert cutoff == NOW - timedelta(days=5)
        assert records[0].original_format is OriginalFormat.FIT

    @pytest.mark.asyncio
    async def test_get_missing_row(self) -> None:
        pool, _ = make_pool(rows=[])
        assert await ActivityCatalog(pool).get(99) is None


class TestUpdates:
    @pytest.mark.asyncio
    async def test_update_data_sets_metadata(self) -> None:
        pool, conn = make_pool()
        metadata = ActivityMetadata(type="Run", gear_id="g1", timestamp=NOW)

        await ActivityCatalog(pool).update_data(42, "abcd1234", metadata)

        args = conn.execute.await_args.args
        assert args[1:] == (42, "abcd1234", "Run", "g1", NOW)

    @pytest.mark.asyncio
    async def test_update_original_stores_format_slug(self) -> None:
        pool, conn = make_pool()
        await ActivityCatalog(pool).update_original(42, "abcd1234", OriginalFormat.GPX)
        assert conn.execute.await_args.args[1:] == (42, "abcd1234", "gpx")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, expected", [("UPDATE 1", True), ("UPDATE 0", False)])
    async def test_mark_missing_reports_transition(self, status: str, expected: bool) -> None:
        pool, _ = make_pool(execute_result=status)
        assert await ActivityCatalog(pool).mark_original_missing(42) is expected

    @pytest.mark.asyncio
    async def test_database_error_wrapped(self) -> None:
        pool, conn = make_pool()
        conn.execute.side_effect = asyncpg.InterfaceError("connection lost")
        with pytest.raises(StorageError, match="catalog write failed"):
            await ActivityCatalog(pool).update_original(42, "abcd1234", OriginalFormat.FIT)


@pytest.mark.parametrize(
    "status, expected",
    [("INSERT 0 3", 3), ("UPDATE 0", 0), ("", 0), (None, 0)],
)
def test_parse_status_count(status, expected) -> None:
    assert _parse_status_count(status) == expected
