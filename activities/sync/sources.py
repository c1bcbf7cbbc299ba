"""Record source adapters.

Sources offer candidate activity IDs; fetchers turn one catalog record into a
:class:`~activities.sync.models.Payload` for the reconciliation engine.

Candidates:
    ApiListingSource  — one page of "list activities for current athlete"
    CsvExportSource   — ``activities.csv`` inside a GDPR export directory

Fetchers:
    ApiDetailFetcher     — activity detail JSON (metadata payload)
    ScrapeExportFetcher  — original file via the emulated web session
    CsvExportSource.fetch — original file from the export directory
"""

from __future__ import annotations

import asyncio
import csv
import io
import logging
import zlib
from dataclasses import dataclass, field
from pathlib import Path

from activities.errors import SourceFetchError
from activities.strava.api import StravaClient
from activities.strava.session import StravaSession
from activities.sync.digest import canonical_json, decompress
from activities.sync.models import (
    ActivityMetadata,
    ActivityRecord,
    Candidate,
    OriginalFormat,
    OriginalMissing,
    Payload,
    PayloadKind,
    RecordSource,
    SourceKind,
)

logger = logging.getLogger("activities.sync.sources")

#: Column 0 of the header row in the export CSV
EXPORT_HEADER_SENTINEL = "Activity ID"
#: Column holding the export-relative path of the original file
EXPORT_ORIGINAL_COLUMN = 12
EXPORT_CSV_NAME = "activities.csv"


# ---------------------------------------------------------------------------
# API listing
# ---------------------------------------------------------------------------


class ApiListingSource(RecordSource):
    """Most recent activities from the authenticated API.

    Called once per run; no deduplication is needed because catalog
    insertion ignores IDs that already exist.
    """

    SOURCE_KIND = SourceKind.POLLING
    DISPLAY_NAME = "Strava API listing"

    def __init__(self, client: StravaClient, access_token: str, per_page: int = 30) -> None:
        self._client = client
        self._access_token = access_token
        self._per_page = per_page

    async def candidates(self) -> list[Candidate]:
        activities = await self._client.list_activities(
            self._access_token, per_page=self._per_page
        )
        result: list[Candidate] = []
        for activity in activities:
            activity_id = self._parse_id(activity.get("id") if isinstance(activity, dict) else None)
            if activity_id is None:
                logger.warning("Skipping listing entry without a usable id: %r", activity)
                continue
            result.append(Candidate(id=activity_id, source=self.SOURCE_KIND))
        logger.info("%s: %d candidates", self.DISPLAY_NAME, len(result))
        return result


# ---------------------------------------------------------------------------
# GDPR export
# ---------------------------------------------------------------------------


@dataclass
class ExportListing:
    """Parsed ``activities.csv``.

    Attributes:
        candidates:     One candidate per data row, in file order.
        original_files: Activity ID → export-relative path of its original.
    """

    candidates: list[Candidate] = field(default_factory=list)
    original_files: dict[int, str] = field(default_factory=dict)


def parse_export_csv(text: str) -> ExportListing:
    """Parse the activities CSV of a GDPR export.

    The header row is recognised by :data:`EXPORT_HEADER_SENTINEL` in the
    first column and skipped, as are empty rows.  Column 0 is the activity
    ID; column 12, when present and non-empty, is the path of the original
    file relative to the export root.

    Raises:
        SourceFetchError: If a data row has a non-numeric ID.
    """
    listing = ExportListing()
    reader = csv.reader(io.StringIO(text))
    for line_no, row in enumerate(reader, start=1):
        if not row or not row[0].strip():
            continue
        if row[0].strip() == EXPORT_HEADER_SENTINEL:
            continue

        activity_id = RecordSource._parse_id(row[0])
        if activity_id is None:
            raise SourceFetchError(f"invalid activity id {row[0]!r} on line {line_no}")

        original_path = None
        if len(row) > EXPORT_ORIGINAL_COLUMN and row[EXPORT_ORIGINAL_COLUMN].strip():
            original_path = row[EXPORT_ORIGINAL_COLUMN].strip()
            listing.original_files[activity_id] = original_path

        listing.candidates.append(
            Candidate(id=activity_id, source=SourceKind.EXPORT, original_path=original_path)
        )
    return listing


class CsvExportSource(RecordSource):
    """Activities and original files from a downloaded GDPR export."""

    SOURCE_KIND = SourceKind.EXPORT
    DISPLAY_NAME = "GDPR export"

    def __init__(self, export_dir: str | Path) -> None:
        self._root = Path(export_dir)
        self._listing: ExportListing | None = None

    @property
    def root(self) -> Path:
        return self._root

    async def listing(self) -> ExportListing:
        """Read and parse ``activities.csv`` once."""
        if self._listing is None:
            path = self._root / EXPORT_CSV_NAME
            try:
                text = await asyncio.to_thread(path.read_text, encoding="utf-8-sig")
            except (OSError, UnicodeDecodeError) as exc:
                raise SourceFetchError(f"failed to open {path}: {exc}") from exc
            self._listing = parse_export_csv(text)
            logger.info(
                "%s: %d activities, %d with original files",
                self.DISPLAY_NAME,
                len(self._listing.candidates),
                len(self._listing.original_files),
            )
        return self._listing

    async def candidates(self) -> list[Candidate]:
        return list((await self.listing()).candidates)

    async def fetch(self, record: ActivityRecord) -> Payload | None:
        """Load the original file for ``record`` from the export.

        Returns:
            The original payload, or None if the export lists no file for it.
        """
        relative = (await self.listing()).original_files.get(record.id)
        if not relative:
            return None

        path = self._root / relative
        data = await asyncio.to_thread(read_export_original, path)
        return Payload.build(
            record.id,
            PayloadKind.ORIGINAL,
            data,
            fmt=OriginalFormat.from_filename(path.name),
        )


def read_export_original(path: Path) -> bytes:
    """Read an original file from an export, gunzipping ``.gz`` files.

    Raises:
        SourceFetchError: If the file cannot be read or decompressed.
    """
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise SourceFetchError(f"failed to read original {path}: {exc}") from exc

    if path.name.lower().endswith(".gz"):
        try:
            data = decompress(data)
        except (OSError, EOFError, zlib.error) as exc:
            raise SourceFetchError(f"failed to decompress {path}: {exc}") from exc
    return data


# ---------------------------------------------------------------------------
# Per-record fetchers
# ---------------------------------------------------------------------------


class ApiDetailFetcher:
    """Fetch the activity detail JSON as a metadata payload."""

    def __init__(self, client: StravaClient, access_token: str) -> None:
        self._client = client
        self._access_token = access_token

    async def fetch(self, record: ActivityRecord) -> Payload:
        """Raises ActivityNotFoundError when the activity no longer exists."""
        detail = await self._client.get_activity(self._access_token, record.id)
        metadata = ActivityMetadata(
            type=detail.get("type") or detail.get("sport_type"),
            gear_id=detail.get("gear_id"),
            timestamp=RecordSource._parse_iso_datetime(detail.get("start_date")),
        )
        return Payload.build(
            record.id,
            PayloadKind.DATA,
            canonical_json(detail),
            metadata=metadata,
        )


class ScrapeExportFetcher:
    """Fetch original files through an authenticated web session."""

    def __init__(self, session: StravaSession) -> None:
        self._session = session

    async def fetch(self, record: ActivityRecord) -> Payload | OriginalMissing:
        export = await self._session.export_original(record.id)
        if export is None:
            return OriginalMissing(record.id)
        return Payload.build(
            record.id,
            PayloadKind.ORIGINAL,
            export.content,
            fmt=export.format,
        )
