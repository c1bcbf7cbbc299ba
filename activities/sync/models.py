"""Base classes and canonical data models for activity reconciliation.

Every record source returns :class:`Candidate` objects and every fetch step
returns a :class:`Payload`.  These types are the single currency passed
between the source adapters, the reconciliation engine, the dual-store
writer and the catalog.
"""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePath

from activities.sync.digest import (
    compress,
    data_object_key,
    digest,
    original_object_key,
)

logger = logging.getLogger("activities.sync")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SourceKind(str, enum.Enum):
    """How an activity first entered the catalog.  Never overwritten."""

    POLLING = "polling"
    EXPORT = "export"


class PayloadKind(str, enum.Enum):
    """The two payload kinds mirrored into blob storage."""

    DATA = "data"
    ORIGINAL = "original"


class OriginalFormat(str, enum.Enum):
    """Format of the original activity file.

    ``MISSING`` is terminal: the provider confirmed there is no original,
    so the record is never fetched for originals again.
    """

    FIT = "fit"
    GPX = "gpx"
    TCX = "tcx"
    UNKNOWN = "unknown"
    MISSING = "missing"

    @classmethod
    def from_filename(cls, name: str) -> "OriginalFormat":
        """Classify a file name by its final extension.

        A trailing ``.gz`` is ignored, so ``1001.fit.gz`` and ``1001.fit``
        are both FIT.  ``Run.fitness.gpx`` is GPX.  Anything else is
        ``UNKNOWN``.
        """
        suffixes = [s.lower() for s in PurePath(name.strip()).suffixes]
        if suffixes and suffixes[-1] == ".gz":
            suffixes.pop()
        if not suffixes:
            return cls.UNKNOWN
        for fmt in (cls.FIT, cls.GPX, cls.TCX):
            if suffixes[-1] == f".{fmt.value}":
                return fmt
        return cls.UNKNOWN


# ---------------------------------------------------------------------------
# Catalog row
# ---------------------------------------------------------------------------


@dataclass
class ActivityRecord:
    """One row of the ``activities.activities`` catalog table.

    Attributes:
        id:              External activity ID (primary key).
        source:          How the row was created; set once.
        data_digest:     Digest of the last-synced metadata payload ("" = never).
        original_digest: Digest of the last-synced original payload ("" = never).
        original_format: Format of the stored original, or MISSING.
        type:            Activity type from the last metadata sync.
        gear_id:         Gear ID from the last metadata sync.
        timestamp:       Activity start time from the last metadata sync.
        created_at:      Insertion time; bounds the freshness window.
    """

    id: int
    source: SourceKind
    data_digest: str = ""
    original_digest: str = ""
    original_format: OriginalFormat | None = None
    type: str | None = None
    gear_id: str | None = None
    timestamp: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def stored_digest(self, kind: PayloadKind) -> str:
        """Return the catalog digest for one payload kind."""
        if kind is PayloadKind.DATA:
            return self.data_digest
        return self.original_digest


# ---------------------------------------------------------------------------
# Adapter output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Candidate:
    """An activity ID offered by a record source.

    Attributes:
        id:            External activity ID.
        source:        Source kind recorded on first insertion.
        original_path: Export-relative path of the original file, if any.
    """

    id: int
    source: SourceKind
    original_path: str | None = None


@dataclass(frozen=True)
class ActivityMetadata:
    """Denormalized columns refreshed by every metadata write."""

    type: str | None = None
    gear_id: str | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True)
class Payload:
    """Fetched content, compressed and digested, ready to reconcile.

    Attributes:
        activity_id: External activity ID.
        kind:        DATA or ORIGINAL.
        compressed:  Gzip bytes as they will be stored.
        digest:      Digest of ``compressed``.
        format:      Original format (ORIGINAL payloads only).
        metadata:    Denormalized metadata (DATA payloads only).
    """

    activity_id: int
    kind: PayloadKind
    compressed: bytes
    digest: str
    format: OriginalFormat | None = None
    metadata: ActivityMetadata | None = None

    @classmethod
    def build(
        cls,
        activity_id: int,
        kind: PayloadKind,
        raw: bytes,
        *,
        fmt: OriginalFormat | None = None,
        metadata: ActivityMetadata | None = None,
    ) -> "Payload":
        """Compress ``raw`` and compute its digest."""
        compressed = compress(raw)
        return cls(
            activity_id=activity_id,
            kind=kind,
            compressed=compressed,
            digest=digest(compressed),
            format=fmt,
            metadata=metadata,
        )

    @property
    def object_key(self) -> str:
        """Blob key this payload is stored under."""
        if self.kind is PayloadKind.DATA:
            return data_object_key(self.activity_id)
        fmt = self.format or OriginalFormat.UNKNOWN
        return original_object_key(self.activity_id, fmt.value)


@dataclass(frozen=True)
class OriginalMissing:
    """Fetch result meaning the provider confirmed there is no original."""

    activity_id: int


# ---------------------------------------------------------------------------
# Abstract record source
# ---------------------------------------------------------------------------


class RecordSource(ABC):
    """Abstract base class for everything that offers candidate activities.

    Subclasses must implement:
        - candidates()
    """

    #: Source kind written on first insertion of each candidate.
    SOURCE_KIND: SourceKind = SourceKind.POLLING

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Source"

    @abstractmethod
    async def candidates(self) -> list[Candidate]:
        """Return the candidate activities for this run.

        Returns:
            Candidates in any order; the engine sorts them by ID.
        """

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_id(value: object) -> int | None:
        """Coerce an activity ID to int, returning None on failure."""
        if value is None:
            return None
        try:
            return int(str(value).strip())
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_iso_datetime(value: str | None) -> datetime | None:
        """Parse an ISO-8601 timestamp ("Z" suffix allowed) to an aware UTC datetime."""
        if not value:
            return None
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            logger.warning("Could not parse datetime string: %r", value)
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
