"""Cooperative cancellation shared by the job harness and the engine."""

from __future__ import annotations

import asyncio

from activities.errors import JobCancelledError


class CancelToken:
    """One-shot cancellation signal.

    The harness sets it on external cancellation or timeout; the engine
    checks it between records, never in the middle of one.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal cancellation.  Only the first reason is kept."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError(self.reason or "cancelled")
