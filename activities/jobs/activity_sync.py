"""activity_sync: refresh activity metadata for new or recently created rows."""

from __future__ import annotations

import logging
from datetime import timedelta

from activities.cancel import CancelToken
from activities.jobs.harness import Job
from activities.services.catalog import ActivityCatalog
from activities.strava.api import StravaClient
from activities.sync.engine import Reconciler
from activities.sync.models import PayloadKind
from activities.sync.sources import ApiDetailFetcher
from activities.sync.writer import DualStoreWriter

logger = logging.getLogger("activities.jobs.activity_sync")


class ActivitySyncJob(Job):
    """Re-fetch detail JSON for rows without a data digest or inside the window.

    Deleted activities (404 / "Record Not Found") are skipped, not failed.
    """

    NAME = "activity_sync"

    def __init__(
        self,
        client: StravaClient,
        catalog: ActivityCatalog,
        writer: DualStoreWriter,
        window: timedelta = timedelta(days=10),
        **overrides,
    ) -> None:
        super().__init__(**overrides)
        self._client = client
        self._catalog = catalog
        self._writer = writer
        self._window = window

    async def run(self, cancel: CancelToken) -> dict:
        token = await self._client.refresh_access_token()
        records = await self._catalog.select_data_candidates(self._window)
        logger.info("%d activities due for a metadata check", len(records))

        fetcher = ApiDetailFetcher(self._client, token.access_token)
        stats = await Reconciler(self._writer, PayloadKind.DATA).run(
            records, fetcher.fetch, cancel=cancel
        )
        return stats.as_dict()
