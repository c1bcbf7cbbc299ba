"""Content digests and blob keys for change detection.

Every payload is compressed before it is persisted, and the digest is taken
over the compressed bytes.  The gzip container is written with a fixed mtime
and no embedded file name, so byte-identical raw payloads always produce
byte-identical compressed payloads and therefore identical digests across
runs.

Blob keys:
    - metadata payloads: ``activities/{kind}/{id}.json.gz``
    - original payloads: ``activities/original/{id}.{format}.gz``
"""

from __future__ import annotations

import gzip
import json
import logging
import zlib
from typing import Any

logger = logging.getLogger("activities.sync.digest")

# Blob "kind" used for the structured activity metadata
DATA_KIND = "activities"

_COMPRESS_LEVEL = 9


def compress(raw: bytes) -> bytes:
    """Gzip ``raw`` with stable parameters.

    ``gzip.compress`` with ``mtime=0`` writes no file name and a zero
    timestamp, so the output only depends on the input bytes.

    Args:
        raw: Uncompressed payload.

    Returns:
        Gzip-compressed bytes.
    """
    return gzip.compress(raw, compresslevel=_COMPRESS_LEVEL, mtime=0)


def decompress(data: bytes) -> bytes:
    """Inverse of :func:`compress` (accepts any gzip stream)."""
    return gzip.decompress(data)


def digest(data: bytes) -> str:
    """Return the CRC-32 of ``data`` as 8 lowercase hex characters.

    Non-cryptographic; used for cheap change detection only.

    Args:
        data: Compressed payload bytes.

    Returns:
        Fixed-size hex digest, e.g. ``"1c291ca3"``.
    """
    return f"{zlib.crc32(data) & 0xFFFFFFFF:08x}"


def canonical_json(payload: Any) -> bytes:
    """Render a JSON-shaped payload deterministically.

    Keys are sorted so two equal responses always serialize to the same
    bytes regardless of the order the provider emitted them in.

    Args:
        payload: The decoded API response.

    Returns:
        UTF-8 encoded JSON.
    """
    return json.dumps(
        payload, sort_keys=True, indent=2, ensure_ascii=False, default=str
    ).encode("utf-8")


def data_object_key(activity_id: int, kind: str = DATA_KIND) -> str:
    """Blob key for a structured metadata payload."""
    return f"activities/{kind}/{activity_id}.json.gz"


def original_object_key(activity_id: int, fmt: str) -> str:
    """Blob key for an original (FIT/GPX/TCX) payload.

    Args:
        activity_id: External activity ID.
        fmt:         Original format slug (``fit``, ``gpx``, ``tcx``, ``unknown``).

    Returns:
        Object key string.
    """
    return f"activities/original/{activity_id}.{fmt}.gz"
