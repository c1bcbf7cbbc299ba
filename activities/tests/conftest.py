"""Shared fixtures and in-memory store fakes for reconciliation tests."""

from __future__ import annotations

import dataclasses
import textwrap
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from activities.config_loader import ToolConfig, load_tool_config
from activities.errors import StorageError
from activities.sync.models import (
    ActivityMetadata,
    ActivityRecord,
    OriginalFormat,
    SourceKind,
)
from activities.sync.writer import DualStoreWriter

# Fixed "now" for freshness window tests
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
LONG_AGO = NOW - timedelta(days=90)


TOOL_CONFIG_YAML = textwrap.dedent(
    """\
    strava:
      client_id: "123"
      client_secret: test_secret
      refresh_token: test_refresh
      host: www.strava.test
      email: athlete@example.com
      password: hunter2
    storage:
      bucket: test-bucket
      endpoint_url: https://storage.example.com
      access_key_id: key
      secret_access_key: secret
    sync:
      data_window_days: 10
      original_window_days: 5
      listing_page_size: 30
    jobs:
      activity_poll:
        schedule: "0 15 * * * *"
        timeout_seconds: 45
    """
)


# ---------------------------------------------------------------------------
# In-memory fakes
# ---------------------------------------------------------------------------


class InMemoryCatalog:
    """Dict-backed stand-in for ActivityCatalog.

    Hands out copies of its rows, like a database would, and logs every
    write call in ``writes``.
    """

    def __init__(self, records: list[ActivityRecord] | None = None) -> None:
        self.rows: dict[int, ActivityRecord] = {r.id: r for r in records or []}
        self.writes: list[tuple[str, int]] = []
        self.fail_updates = False

    def _copy(self, record: ActivityRecord) -> ActivityRecord:
        return dataclasses.replace(record)

    async def insert_candidates(self, candidates) -> int:
        inserted = 0
        for candidate in candidates:
            if candidate.id in self.rows:
                continue
            self.rows[candidate.id] = ActivityRecord(id=candidate.id, source=candidate.source)
            self.writes.append(("insert", candidate.id))
            inserted += 1
        return inserted

    # Same predicates as the catalog's candidate queries
    async def select_data_candidates(self, window, now=None) -> list[ActivityRecord]:
        cutoff = (now or datetime.now(timezone.utc)) - window
        rows = [r for r in self.rows.values() if r.data_digest == "" or r.created_at > cutoff]
        return [self._copy(r) for r in sorted(rows, key=lambda r: r.id)]

    async def select_original_candidates(self, window, now=None) -> list[ActivityRecord]:
        cutoff = (now or datetime.now(timezone.utc)) - window
        rows = [
            r
            for r in self.rows.values()
            if (r.original_digest == "" or r.created_at > cutoff)
            and r.original_format is not OriginalFormat.MISSING
        ]
        return [self._copy(r) for r in sorted(rows, key=lambda r: r.id)]

    async def get(self, activity_id: int) -> ActivityRecord | None:
        row = self.rows.get(activity_id)
        return self._copy(row) if row else None

    async def update_data(self, activity_id: int, digest: str, metadata: ActivityMetadata) -> None:
        if self.fail_updates:
            raise StorageError("catalog write failed: connection reset")
        row = self.rows[activity_id]
        row.data_digest = digest
        row.type = metadata.type
        row.gear_id = metadata.gear_id
        row.timestamp = metadata.timestamp
        self.writes.append(("update_data", activity_id))

    async def update_original(self, activity_id: int, digest: str, fmt: OriginalFormat) -> None:
        if self.fail_updates:
            raise StorageError("catalog write failed: connection reset")
        row = self.rows[activity_id]
        row.original_digest = digest
        row.original_format = fmt
        self.writes.append(("update_original", activity_id))

    async def mark_original_missing(self, activity_id: int) -> bool:
        row = self.rows[activity_id]
        if row.original_format is OriginalFormat.MISSING:
            return False
        row.original_format = OriginalFormat.MISSING
        self.writes.append(("mark_missing", activity_id))
        return True


class InMemoryBlobStore:
    """Dict-backed stand-in for BlobStore."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.puts: list[str] = []
        self.fail_puts = False

    @property
    def bucket(self) -> str:
        return "memory"

    async def put_object(self, key: str, data: bytes) -> None:
        if self.fail_puts:
            raise StorageError(f"failed to write {key}: SlowDown")
        self.objects[key] = data
        self.puts.append(key)

    async def get_object(self, key: str) -> bytes | None:
        return self.objects.get(key)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog()


@pytest.fixture
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def writer(catalog: InMemoryCatalog, blobs: InMemoryBlobStore) -> DualStoreWriter:
    return DualStoreWriter(catalog, blobs)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(TOOL_CONFIG_YAML)
    return path


@pytest.fixture
def tool_config(config_file: Path) -> ToolConfig:
    """A fully valid tool config loaded from YAML."""
    return load_tool_config(config_file)


def make_record(activity_id: int, **fields) -> ActivityRecord:
    """Catalog row created long ago, so only empty digests make it eligible."""
    fields.setdefault("source", SourceKind.POLLING)
    fields.setdefault("created_at", LONG_AGO)
    return ActivityRecord(id=activity_id, **fields)
