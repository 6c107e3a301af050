"""Time-shifted replay queue for fused snapshots."""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from typing import Callable

from livetraffic.models.snapshot import DelayedFrame, FusedSnapshot

logger = logging.getLogger("livetraffic.delay_buffer")


class DelayBuffer:
    """Hold snapshots for ``delay_seconds`` before releasing them in order.

    Frames are ordered by logical timestamp, so a frame that arrives late is
    slotted in ahead of newer ones instead of being dropped, as long as it is
    within ``reorder_window`` seconds of the newest frame pushed. Delivery
    never goes backwards: a frame older than one already released is
    discarded. When the buffered span exceeds ``max_span`` seconds the oldest
    frames are dropped. The cap is never smaller than the delay plus the
    reorder window.
    """

    def __init__(
        self,
        delay_seconds: float = 0.0,
        *,
        max_span: float = 900.0,
        reorder_window: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self.delay_seconds = delay_seconds
        # Frames are held for the whole delay, so the span cap must cover it.
        self.max_span = max(max_span, delay_seconds + reorder_window)
        if self.max_span != max_span:
            logger.info(
                "Raising delay buffer span cap to %ss to cover a %ss delay",
                self.max_span,
                delay_seconds,
            )
        self.reorder_window = reorder_window
        self.clock = clock
        self._frames: list[DelayedFrame] = []
        self._sequence = itertools.count()
        self._newest_pushed: float | None = None
        self._last_delivered: float | None = None
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def last_delivered(self) -> float | None:
        return self._last_delivered

    def push(self, snapshot: FusedSnapshot, now: float | None = None) -> bool:
        """Queue a snapshot; return False if it was too old to keep."""

        now = self.clock() if now is None else now
        logical = snapshot.logical_timestamp

        if self._last_delivered is not None and logical < self._last_delivered:
            self.dropped += 1
            logger.debug("Dropping frame %.1f older than delivered %.1f", logical, self._last_delivered)
            return False
        if self._newest_pushed is not None and logical < self._newest_pushed - self.reorder_window:
            self.dropped += 1
            logger.debug("Dropping frame %.1f outside the reorder window", logical)
            return False

        heapq.heappush(
            self._frames,
            DelayedFrame(
                logical_timestamp=logical,
                sequence=next(self._sequence),
                eligible_at=now + self.delay_seconds,
                snapshot=snapshot,
            ),
        )
        if self._newest_pushed is None or logical > self._newest_pushed:
            self._newest_pushed = logical
        self._enforce_span()
        return True

    def _enforce_span(self) -> None:
        while (
            len(self._frames) > 1
            and self._newest_pushed is not None
            and self._newest_pushed - self._frames[0].logical_timestamp > self.max_span
        ):
            dropped = heapq.heappop(self._frames)
            self.dropped += 1
            logger.warning(
                "Delay buffer over %ss span; dropping frame %.1f",
                self.max_span,
                dropped.logical_timestamp,
            )

    def pop_ready(self, now: float | None = None) -> FusedSnapshot | None:
        """Release the oldest frame whose eligibility time has passed."""

        now = self.clock() if now is None else now
        while self._frames:
            head = self._frames[0]
            if head.eligible_at > now:
                return None
            heapq.heappop(self._frames)
            if self._last_delivered is not None and head.logical_timestamp < self._last_delivered:
                self.dropped += 1
                continue
            self._last_delivered = head.logical_timestamp
            return head.snapshot
        return None

    def seconds_until_ready(self, now: float | None = None) -> float | None:
        """Time left before the head frame is released, or None when empty."""

        if not self._frames:
            return None
        now = self.clock() if now is None else now
        return max(self._frames[0].eligible_at - now, 0.0)

    def buffered_seconds(self, now: float | None = None) -> float:
        """Seconds until the newest buffered frame is released; 0 when empty."""

        if not self._frames:
            return 0.0
        now = self.clock() if now is None else now
        newest = max(frame.eligible_at for frame in self._frames)
        return max(newest - now, 0.0)

    def clear(self) -> None:
        self._frames.clear()


__all__ = ["DelayBuffer"]
