"""Digest-based reconciliation engine.

For every eligible record the engine always fetches the candidate content and
computes its digest, but only writes when that digest differs from the one in
the catalog (or the catalog has none yet).  Fetch and digest cost is paid on
every eligible run; blob writes are paid only on detected change.

Records are processed one at a time in ascending ID order.  Each record is
committed independently, so a failure leaves a well-defined prefix of
reconciled records and the rest untouched.  Cancellation is observed between
records only.

Usage::

    reconciler = Reconciler(writer, PayloadKind.DATA)
    stats = await reconciler.run(records, fetcher.fetch, cancel=token)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Iterable

from activities.cancel import CancelToken
from activities.errors import ActivityNotFoundError
from activities.sync.models import (
    ActivityRecord,
    OriginalFormat,
    OriginalMissing,
    Payload,
    PayloadKind,
)
from activities.sync.writer import DualStoreWriter, WriteOutcome

logger = logging.getLogger("activities.sync.engine")

FetchResult = Payload | OriginalMissing | None
Fetch = Callable[[ActivityRecord], Awaitable[FetchResult]]


@dataclass
class ReconcileStats:
    """Counters for one reconciliation run.

    Attributes:
        kind:      Payload kind reconciled.
        processed: Records fully handled (including soft skips).
        written:   Blob and row written.
        repaired:  Row only, blob already current.
        unchanged: Digest matched the catalog; nothing written.
        skipped:   Soft skips (not found / nothing to fetch).
        missing:   Records newly marked as having no original.
        last_id:   Highest ID fully handled so far.
    """

    kind: PayloadKind
    processed: int = 0
    written: int = 0
    repaired: int = 0
    unchanged: int = 0
    skipped: int = 0
    missing: int = 0
    last_id: int | None = None

    @property
    def writes(self) -> int:
        return self.written + self.repaired + self.missing

    def as_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


class Reconciler:
    """Compare fetched payloads to catalog state and write on change."""

    def __init__(self, writer: DualStoreWriter, kind: PayloadKind) -> None:
        self._writer = writer
        self._kind = kind

    @property
    def kind(self) -> PayloadKind:
        return self._kind

    async def run(
        self,
        records: Iterable[ActivityRecord],
        fetch: Fetch,
        cancel: CancelToken | None = None,
    ) -> ReconcileStats:
        """Reconcile ``records`` in ascending ID order.

        Args:
            records: Catalog rows to check.
            fetch:   Async callable returning a Payload, OriginalMissing, or
                     None for nothing to reconcile.
            cancel:  Checked before every record.

        Returns:
            Run statistics.

        Raises:
            JobCancelledError: If ``cancel`` fires; records already handled
                stay committed.
            Any fetch or storage error: the first one aborts the run.
        """
        ordered = sorted(records, key=lambda r: r.id)
        stats = ReconcileStats(kind=self._kind)
        logger.info("Reconciling %d %s records", len(ordered), self._kind.value)

        for record in ordered:
            if cancel is not None:
                cancel.raise_if_cancelled()
            await self.reconcile_one(record, fetch, stats)

        logger.info(
            "Reconcile %s complete: %d processed, %d written, %d repaired, "
            "%d unchanged, %d skipped, %d missing",
            self._kind.value,
            stats.processed,
            stats.written,
            stats.repaired,
            stats.unchanged,
            stats.skipped,
            stats.missing,
        )
        return stats

    async def reconcile_one(
        self, record: ActivityRecord, fetch: Fetch, stats: ReconcileStats
    ) -> None:
        """Fetch, compare and, if needed, commit a single record."""
        if (
            self._kind is PayloadKind.ORIGINAL
            and record.original_format is OriginalFormat.MISSING
        ):
            logger.debug("Activity %s: original known missing, skipping", record.id)
            self._done(record, stats, "skipped")
            return

        try:
            result = await fetch(record)
        except ActivityNotFoundError:
            logger.info("Activity %s not found, skipping", record.id)
            self._done(record, stats, "skipped")
            return

        if result is None:
            self._done(record, stats, "skipped")
            return

        if isinstance(result, OriginalMissing):
            if self._kind is not PayloadKind.ORIGINAL:
                raise ValueError("OriginalMissing returned for a metadata fetch")
            changed = await self._writer.mark_missing(record)
            self._done(record, stats, "missing" if changed else "skipped")
            return

        if result.kind is not self._kind:
            raise ValueError(
                f"fetch returned a {result.kind.value} payload to a {self._kind.value} reconciler"
            )

        stored = record.stored_digest(self._kind)
        if stored and stored == result.digest:
            logger.debug("Activity %s: %s unchanged (%s)", record.id, self._kind.value, stored)
            self._done(record, stats, "unchanged")
            return

        outcome = await self._writer.commit(record, result)
        self._done(record, stats, "repaired" if outcome is WriteOutcome.REPAIRED else "written")

    @staticmethod
    def _done(record: ActivityRecord, stats: ReconcileStats, counter: str) -> None:
        setattr(stats, counter, getattr(stats, counter) + 1)
        stats.processed += 1
        stats.last_id = record.id
