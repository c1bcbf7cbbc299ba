"""Dual-store writer: blob object first, catalog row second.

Ordering contract:
    1. the blob is written and confirmed before the catalog row changes, so
       the catalog never points at a blob generation that does not exist;
    2. if the blob write fails the row is untouched and the old digest stays
       valid, so the next run retries;
    3. if the row update fails after the blob write, the next run still sees
       the old catalog digest, reads the blob back, finds it already matches
       and only updates the row (read-repair).
"""

from __future__ import annotations

import enum
import logging

from activities.services.blobstore import BlobStore
from activities.services.catalog import ActivityCatalog
from activities.sync.digest import digest
from activities.sync.models import (
    ActivityMetadata,
    ActivityRecord,
    OriginalFormat,
    Payload,
    PayloadKind,
)

logger = logging.getLogger("activities.sync.writer")


class WriteOutcome(str, enum.Enum):
    """What a commit actually touched."""

    WRITTEN = "written"    # blob and row
    REPAIRED = "repaired"  # row only; blob already held this payload


class DualStoreWriter:
    """The only component that writes blob objects or digest columns."""

    def __init__(self, catalog: ActivityCatalog, blobs: BlobStore) -> None:
        self._catalog = catalog
        self._blobs = blobs

    async def commit(self, record: ActivityRecord, payload: Payload) -> WriteOutcome:
        """Persist ``payload`` for ``record`` in both stores.

        The caller has already established that the catalog digest differs
        from ``payload.digest`` (or is empty).

        Raises:
            StorageError: If either store fails.  Blob failures leave the row
                untouched.
        """
        key = payload.object_key
        current = await self._blobs.get_object(key)
        blob_matches = current is not None and digest(current) == payload.digest

        if blob_matches:
            logger.info(
                "Activity %s: %s blob already current, repairing catalog row",
                record.id,
                payload.kind.value,
            )
        else:
            await self._blobs.put_object(key, payload.compressed)
            logger.info("Activity %s: %s object was updated", record.id, payload.kind.value)

        await self._update_row(record, payload)
        return WriteOutcome.REPAIRED if blob_matches else WriteOutcome.WRITTEN

    async def mark_missing(self, record: ActivityRecord) -> bool:
        """Mark ``record`` as having no original.

        Returns:
            True if the catalog row transitioned to ``missing`` now.
        """
        changed = await self._catalog.mark_original_missing(record.id)
        record.original_format = OriginalFormat.MISSING
        if changed:
            logger.info("Activity %s: original marked missing", record.id)
        return changed

    async def _update_row(self, record: ActivityRecord, payload: Payload) -> None:
        if payload.kind is PayloadKind.DATA:
            metadata = payload.metadata or ActivityMetadata()
            await self._catalog.update_data(record.id, payload.digest, metadata)
            record.data_digest = payload.digest
            record.type = metadata.type
            record.gear_id = metadata.gear_id
            record.timestamp = metadata.timestamp
        else:
            fmt = payload.format or OriginalFormat.UNKNOWN
            await self._catalog.update_original(record.id, payload.digest, fmt)
            record.original_digest = payload.digest
            record.original_format = fmt
