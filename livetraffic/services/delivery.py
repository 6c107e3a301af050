"""Shared slot through which delayed snapshots reach client sessions."""

from __future__ import annotations

from livetraffic.models.snapshot import FusedSnapshot


class SnapshotFeed:
    """Latest released snapshot, read by every session.

    There is a single writer (the delay-buffer drainer). Snapshots are
    frozen, so readers share them without copying or locking.
    """

    def __init__(self) -> None:
        self._current: FusedSnapshot | None = None
        self._sequence = 0

    @property
    def current(self) -> FusedSnapshot | None:
        return self._current

    @property
    def sequence(self) -> int:
        return self._sequence

    async def publish(self, snapshot: FusedSnapshot) -> None:
        self._current = snapshot
        self._sequence += 1


__all__ = ["SnapshotFeed"]
