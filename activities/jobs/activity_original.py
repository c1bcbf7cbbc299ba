"""activity_original: download original recordings through the web session."""

from __future__ import annotations

import logging
from datetime import timedelta

from activities.cancel import CancelToken
from activities.jobs.harness import Job
from activities.services.catalog import ActivityCatalog
from activities.strava.session import StravaSession
from activities.sync.engine import Reconciler
from activities.sync.models import PayloadKind
from activities.sync.sources import ScrapeExportFetcher
from activities.sync.writer import DualStoreWriter

logger = logging.getLogger("activities.jobs.activity_original")


class ActivityOriginalJob(Job):
    """Mirror original files for rows without one or inside the window.

    Logs in once per run.  Activities whose export redirects are marked
    ``missing`` and never selected again.
    """

    NAME = "activity_original"

    def __init__(
        self,
        session: StravaSession,
        catalog: ActivityCatalog,
        writer: DualStoreWriter,
        window: timedelta = timedelta(days=5),
        **overrides,
    ) -> None:
        super().__init__(**overrides)
        self._session = session
        self._catalog = catalog
        self._writer = writer
        self._window = window

    async def run(self, cancel: CancelToken) -> dict:
        try:
            await self._session.login()
            records = await self._catalog.select_original_candidates(self._window)
            logger.info("%d activities due for an original check", len(records))

            fetcher = ScrapeExportFetcher(self._session)
            stats = await Reconciler(self._writer, PayloadKind.ORIGINAL).run(
                records, fetcher.fetch, cancel=cancel
            )
        finally:
            await self._session.aclose()
        return stats.as_dict()
