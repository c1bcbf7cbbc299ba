"""from_export: import activities and originals from a GDPR export directory."""

from __future__ import annotations

import logging
from pathlib import Path

from activities.cancel import CancelToken
from activities.jobs.harness import Job
from activities.services.catalog import ActivityCatalog
from activities.sync.engine import Reconciler
from activities.sync.models import ActivityRecord, PayloadKind
from activities.sync.sources import CsvExportSource
from activities.sync.writer import DualStoreWriter

logger = logging.getLogger("activities.jobs.from_export")


class FromExportJob(Job):
    """Insert every activity in ``activities.csv`` and mirror its original.

    The export directory is fixed at construction.  Activities already marked
    ``missing`` are left alone; unchanged originals cost a read and a digest
    but no write.
    """

    NAME = "from_export"
    DEFAULT_SCHEDULE = "0 0 6 * * *"

    def __init__(
        self,
        export_dir: str | Path,
        catalog: ActivityCatalog,
        writer: DualStoreWriter,
        **overrides,
    ) -> None:
        super().__init__(**overrides)
        self._source = CsvExportSource(export_dir)
        self._catalog = catalog
        self._writer = writer

    @property
    def export_dir(self) -> Path:
        return self._source.root

    async def run(self, cancel: CancelToken) -> dict:
        listing = await self._source.listing()

        cancel.raise_if_cancelled()
        inserted = await self._catalog.insert_candidates(listing.candidates)

        records: list[ActivityRecord] = []
        for activity_id in sorted(listing.original_files):
            record = await self._catalog.get(activity_id)
            if record is None:
                logger.warning("Activity %s listed in export but not in catalog", activity_id)
                continue
            records.append(record)

        stats = await Reconciler(self._writer, PayloadKind.ORIGINAL).run(
            records, self._source.fetch, cancel=cancel
        )
        result = stats.as_dict()
        result["candidates"] = len(listing.candidates)
        result["inserted"] = inserted
        return result
