# Periodic expiry sweep.
# Created: 2026-02-20
#
# Deletes codes, tokens, device and CIBA records past their expiry. A sweep
# only removes records that are already unusable, so it can run alongside
# request handling and be repeated freely.

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime

from authgate.api.oauth2.events import EventSink, emit_event
from authgate.api.oauth2.models import utcnow
from authgate.api.oauth2.storage import OAuthStorage

logger = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(
        self,
        storage: OAuthStorage,
        interval: float = 300.0,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.interval = interval
        self.events = events
        self.clock = clock
        self._task: asyncio.Task | None = None

    def sweep_once(self) -> dict[str, int]:
        """Run one sweep and return how many records of each kind were removed."""
        from authgate.security.rate_limiter import cleanup_all

        now = self.clock()
        expired_ciba = self.storage.expire_ciba_requests(now)
        counts = self.storage.delete_expired(now)
        counts["ciba_requests_expired"] = expired_ciba
        counts["rate_limit_buckets"] = cleanup_all()
        total = sum(counts.values())
        if total:
            logger.info("Expiry sweep removed %d records", total)
            emit_event(self.events, "expired_records_swept", "storage", **counts)
        return counts

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Expiry sweep failed")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="authgate-expiry-sweeper")
            logger.debug("Expiry sweeper started (every %.0fs)", self.interval)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
