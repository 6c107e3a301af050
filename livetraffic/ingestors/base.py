"""Shared polling loop for feed ingestors."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger("livetraffic.ingestors")


class FeedError(RuntimeError):
    """Raised when a provider poll fails (transport error, bad status, bad payload)."""


class PollingIngestor:
    """Poll one provider on a fixed interval and push records to a queue.

    Subclasses implement :meth:`poll`. A failed poll is logged and retried on
    the next interval; consecutive failures stretch the wait up to
    ``backoff_max`` seconds. The queue is never awaited on: when it is full,
    the rest of that poll's records are dropped.
    """

    name = "feed"

    def __init__(self, *, interval: float, backoff_max: float = 60.0) -> None:
        self.interval = interval
        self.backoff_max = backoff_max
        self.failures = 0
        self.dropped = 0

    async def poll(self) -> list[Any]:
        raise NotImplementedError

    def retry_delay(self) -> float:
        if self.failures == 0:
            return self.interval
        ceiling = max(self.interval, self.backoff_max)
        return min(self.interval * 2 ** (self.failures - 1), ceiling)

    def emit(self, queue: asyncio.Queue, records: list[Any]) -> int:
        """Push records without blocking; return how many were accepted."""

        accepted = 0
        for record in records:
            try:
                queue.put_nowait(record)
            except asyncio.QueueFull:
                dropped = len(records) - accepted
                self.dropped += dropped
                logger.warning(
                    "%s: ingestion queue full, dropped %s records", self.name, dropped
                )
                break
            accepted += 1
        return accepted

    async def run_once(self, queue: asyncio.Queue) -> int:
        try:
            records = await self.poll()
        except FeedError as exc:
            self.failures += 1
            logger.warning("%s poll failed (%s in a row): %s", self.name, self.failures, exc)
            return 0
        except asyncio.CancelledError:
            raise
        except Exception:  # pragma: no cover
            self.failures += 1
            logger.exception("%s poll raised unexpectedly", self.name)
            return 0

        self.failures = 0
        accepted = self.emit(queue, records)
        logger.debug("%s emitted %s records", self.name, accepted)
        return accepted

    async def wait(self, delay: float) -> None:
        await asyncio.sleep(delay)

    async def run(self, queue: asyncio.Queue) -> None:
        """Run the poll loop until cancelled."""

        logger.info("%s ingestor started (interval %ss)", self.name, self.interval)
        try:
            while True:
                await self.run_once(queue)
                await self.wait(self.retry_delay())
        except asyncio.CancelledError:
            logger.info("%s ingestor cancelled", self.name)
            raise


__all__ = ["FeedError", "PollingIngestor"]
