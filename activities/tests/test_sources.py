"""Tests for record sources: API listing, GDPR export and fetchers."""

from __future__ import annotations

import gzip
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from activities.errors import SourceFetchError
from activities.strava.session import OriginalExport
from activities.sync.digest import decompress
from activities.sync.models import (
    Candidate,
    OriginalFormat,
    OriginalMissing,
    PayloadKind,
    SourceKind,
)
from activities.sync.sources import (
    ApiDetailFetcher,
    ApiListingSource,
    CsvExportSource,
    ScrapeExportFetcher,
    parse_export_csv,
    read_export_original,
)
from activities.tests.conftest import make_record

HEADER = (
    "Activity ID,Activity Date,Activity Name,Activity Type,Activity Description,"
    "Elapsed Time,Distance,Max Heart Rate,Relative Effort,Commute,Activity Private Note,"
    "Activity Gear,Filename"
)


def csv_row(activity_id: str, filename: str = "") -> str:
    return f'{activity_id},"Feb 23, 2026, 7:00:00 AM",Morning Run,Run,,1800,5.01,171,40,false,,,{filename}'


# ---------------------------------------------------------------------------
# API listing
# ---------------------------------------------------------------------------


class TestApiListingSource:
    @pytest.mark.asyncio
    async def test_candidates_are_polling(self) -> None:
        client = MagicMock()
        client.list_activities = AsyncMock(return_value=[{"id": 3}, {"id": 1}, {"id": 2}])

        candidates = await ApiListingSource(client, "abc", per_page=3).candidates()

        assert [c.id for c in candidates] == [3, 1, 2]
        assert all(c.source is SourceKind.POLLING for c in candidates)
        client.list_activities.assert_awaited_once_with("abc", per_page=3)

    @pytest.mark.asyncio
    async def test_entries_without_id_skipped(self) -> None:
        client = MagicMock()
        client.list_activities = AsyncMock(return_value=[{"id": 1}, {"name": "?"}, "junk"])

        candidates = await ApiListingSource(client, "abc").candidates()

        assert candidates == [Candidate(id=1, source=SourceKind.POLLING)]


# ---------------------------------------------------------------------------
# GDPR export CSV
# ---------------------------------------------------------------------------


class TestParseExportCsv:
    def test_header_skipped_and_original_mapped(self) -> None:
        listing = parse_export_csv("\n".join([HEADER, csv_row("1001", "data/1001.fit.gz")]))

        assert listing.candidates == [
            Candidate(id=1001, source=SourceKind.EXPORT, original_path="data/1001.fit.gz")
        ]
        assert listing.original_files == {1001: "data/1001.fit.gz"}

    def test_empty_original_column_not_mapped(self) -> None:
        listing = parse_export_csv("\n".join([HEADER, csv_row("1002")]))
        assert [c.id for c in listing.candidates] == [1002]
        assert listing.original_files == {}

    def test_short_rows_and_blank_lines(self) -> None:
        listing = parse_export_csv(f"{HEADER}\n\n1003,short row\n")
        assert [c.id for c in listing.candidates] == [1003]
        assert listing.original_files == {}

    def test_large_ids_parsed_as_int(self) -> None:
        listing = parse_export_csv(csv_row("12345678901", "activities/12345678901.gpx"))
        assert listing.candidates[0].id == 12345678901

    def test_non_numeric_id_rejected(self) -> None:
        with pytest.raises(SourceFetchError, match="invalid activity id"):
            parse_export_csv("\n".join([HEADER, csv_row("abc")]))


class TestCsvExportSource:
    def _export(self, tmp_path: Path) -> Path:
        (tmp_path / "activities").mkdir()
        (tmp_path / "activities" / "1001.fit.gz").write_bytes(
            gzip.compress(b"FIT-1001", mtime=99)
        )
        (tmp_path / "activities" / "1002.gpx").write_bytes(b"<gpx>1002</gpx>")
        rows = [
            HEADER,
            csv_row("1001", "activities/1001.fit.gz"),
            csv_row("1002", "activities/1002.gpx"),
            csv_row("1003"),
        ]
        # exports are written with a byte-order mark
        (tmp_path / "activities.csv").write_text("\ufeff" + "\n".join(rows), encoding="utf-8")
        return tmp_path

    @pytest.mark.asyncio
    async def test_candidates_are_export(self, tmp_path: Path) -> None:
        source = CsvExportSource(self._export(tmp_path))
        candidates = await source.candidates()
        assert [c.id for c in candidates] == [1001, 1002, 1003]
        assert all(c.source is SourceKind.EXPORT for c in candidates)

    @pytest.mark.asyncio
    async def test_fetch_gunzips_and_classifies(self, tmp_path: Path) -> None:
        source = CsvExportSource(self._export(tmp_path))
        payload = await source.fetch(make_record(1001))

        assert payload.kind is PayloadKind.ORIGINAL
        assert payload.format is OriginalFormat.FIT
        assert decompress(payload.compressed) == b"FIT-1001"
        assert payload.object_key == "activities/original/1001.fit.gz"

    @pytest.mark.asyncio
    async def test_fetch_plain_file(self, tmp_path: Path) -> None:
        source = CsvExportSource(self._export(tmp_path))
        payload = await source.fetch(make_record(1002))
        assert payload.format is OriginalFormat.GPX
        assert decompress(payload.compressed) == b"<gpx>1002</gpx>"

    @pytest.mark.asyncio
    async def test_fetch_without_original_is_none(self, tmp_path: Path) -> None:
        source = CsvExportSource(self._export(tmp_path))
        assert await source.fetch(make_record(1003)) is None

    @pytest.mark.asyncio
    async def test_missing_csv_raises(self, tmp_path: Path) -> None:
        with pytest.raises(SourceFetchError, match="failed to open"):
            await CsvExportSource(tmp_path).candidates()

    @pytest.mark.asyncio
    async def test_undecodable_csv_raises(self, tmp_path: Path) -> None:
        (tmp_path / "activities.csv").write_bytes(b"Activity ID\n1001\xff\xfe\n")
        with pytest.raises(SourceFetchError, match="failed to open"):
            await CsvExportSource(tmp_path).candidates()

    def test_read_missing_original_raises(self, tmp_path: Path) -> None:
        with pytest.raises(SourceFetchError, match="failed to read"):
            read_export_original(tmp_path / "gone.fit")

    def test_read_corrupt_gzip_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.tcx.gz"
        path.write_bytes(b"not gzip at all")
        with pytest.raises(SourceFetchError, match="failed to decompress"):
            read_export_original(path)


# ---------------------------------------------------------------------------
# Per-record fetchers
# ---------------------------------------------------------------------------


class TestApiDetailFetcher:
    @pytest.mark.asyncio
    async def test_builds_data_payload_with_metadata(self) -> None:
        client = MagicMock()
        client.get_activity = AsyncMock(
            return_value={
                "id": 7,
                "type": "Ride",
                "gear_id": "b123",
                "start_date": "2026-02-23T07:00:00Z",
            }
        )
        payload = await ApiDetailFetcher(client, "abc").fetch(make_record(7))

        assert payload.kind is PayloadKind.DATA
        assert payload.metadata.type == "Ride"
        assert payload.metadata.gear_id == "b123"
        assert payload.metadata.timestamp == datetime(2026, 2, 23, 7, 0, tzinfo=timezone.utc)
        client.get_activity.assert_awaited_once_with("abc", 7)

    @pytest.mark.asyncio
    async def test_key_order_does_not_change_digest(self) -> None:
        client = MagicMock()
        client.get_activity = AsyncMock(side_effect=[{"id": 7, "type": "Run"}, {"type": "Run", "id": 7}])
        fetcher = ApiDetailFetcher(client, "abc")
        first = await fetcher.fetch(make_record(7))
        second = await fetcher.fetch(make_record(7))
        assert first.digest == second.digest


class TestScrapeExportFetcher:
    @pytest.mark.asyncio
    async def test_export_becomes_original_payload(self) -> None:
        session = MagicMock()
        session.export_original = AsyncMock(
            return_value=OriginalExport(activity_id=9, format=OriginalFormat.TCX, content=b"<tcx/>")
        )
        payload = await ScrapeExportFetcher(session).fetch(make_record(9))
        assert payload.kind is PayloadKind.ORIGINAL
        assert payload.format is OriginalFormat.TCX

    @pytest.mark.asyncio
    async def test_redirect_becomes_original_missing(self) -> None:
        session = MagicMock()
        session.export_original = AsyncMock(return_value=None)
        assert await ScrapeExportFetcher(session).fetch(make_record(9)) == OriginalMissing(9)
