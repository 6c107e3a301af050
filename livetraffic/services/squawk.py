"""Transponder code allocation for tracked aircraft."""

from __future__ import annotations

import heapq
import logging
import threading

logger = logging.getLogger("livetraffic.squawk")

RESERVED_CODES = frozenset({"0000", "1200", "2000", "7000", "7500", "7600", "7700", "7777"})


def _octal(code: str) -> int:
    if len(code) != 4:
        raise ValueError(f"Squawk code must have four digits: {code!r}")
    return int(code, 8)


def format_code(value: int) -> str:
    return format(value, "04o")


class SquawkManager:
    """Hand out the lowest free code in a bounded range.

    Allocation is idempotent per identity key, and a code is never held by two
    keys at once. All methods take the same lock, so allocation cannot
    interleave with a release from an expiry sweep.
    """

    def __init__(
        self,
        range_start: str = "0201",
        range_end: str = "7677",
        reserved: frozenset[str] = RESERVED_CODES,
    ) -> None:
        start, end = _octal(range_start), _octal(range_end)
        if start > end:
            raise ValueError("Squawk range start must not exceed its end")
        self._free = [
            value for value in range(start, end + 1) if format_code(value) not in reserved
        ]
        heapq.heapify(self._free)
        self._assigned: dict[str, int] = {}
        self._lock = threading.Lock()

    def allocate(self, key: str) -> str | None:
        """Return the code held by ``key``, assigning the lowest free one if needed.

        Returns ``None`` when the pool is exhausted.
        """

        with self._lock:
            held = self._assigned.get(key)
            if held is not None:
                return format_code(held)
            if not self._free:
                logger.warning("Squawk pool exhausted; %s left without a code", key)
                return None
            value = heapq.heappop(self._free)
            self._assigned[key] = value
            return format_code(value)

    def release(self, key: str) -> str | None:
        with self._lock:
            value = self._assigned.pop(key, None)
            if value is None:
                return None
            heapq.heappush(self._free, value)
            return format_code(value)

    def code_for(self, key: str) -> str | None:
        with self._lock:
            value = self._assigned.get(key)
            return format_code(value) if value is not None else None

    def assignments(self) -> dict[str, str]:
        with self._lock:
            return {key: format_code(value) for key, value in self._assigned.items()}

    @property
    def available(self) -> int:
        with self._lock:
            return len(self._free)


__all__ = ["RESERVED_CODES", "SquawkManager", "format_code"]
