"""Reconciliation core for the activities mirror.

Modules:
    models  — catalog row, candidates, payloads, RecordSource ABC
    digest  — stable compression, CRC-32 digest, blob keys
    sources — API listing, GDPR export and scrape adapters
    engine  — digest comparison and per-record reconciliation
    writer  — blob-then-row dual-store writer with read-repair
"""
