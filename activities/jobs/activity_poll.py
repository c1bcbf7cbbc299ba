"""activity_poll: discover recent activities and add them to the catalog."""

from __future__ import annotations

import logging

from activities.cancel import CancelToken
from activities.jobs.harness import Job
from activities.services.catalog import ActivityCatalog
from activities.strava.api import StravaClient
from activities.sync.sources import ApiListingSource

logger = logging.getLogger("activities.jobs.activity_poll")


class ActivityPollJob(Job):
    """Insert the IDs of the most recent page of activities.

    Existing IDs are left untouched; nothing is fetched per record.
    """

    NAME = "activity_poll"

    def __init__(
        self,
        client: StravaClient,
        catalog: ActivityCatalog,
        per_page: int = 30,
        **overrides,
    ) -> None:
        super().__init__(**overrides)
        self._client = client
        self._catalog = catalog
        self._per_page = per_page

    async def run(self, cancel: CancelToken) -> dict:
        token = await self._client.refresh_access_token()
        source = ApiListingSource(self._client, token.access_token, per_page=self._per_page)
        candidates = await source.candidates()

        cancel.raise_if_cancelled()
        inserted = await self._catalog.insert_candidates(candidates)
        return {"candidates": len(candidates), "inserted": inserted}
