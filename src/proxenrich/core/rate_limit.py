"""
Simple in-process rate limiting utilities.

The distance oracle allows one request per fixed interval, so enrichment runs
space their calls with `RequestSpacer` instead of bursting.
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class RequestSpacer:
    """Enforce a minimum delay between consecutive calls (single-threaded)."""

    min_interval_seconds: float

    def __post_init__(self) -> None:
        if float(self.min_interval_seconds) < 0:
            raise ValueError("min_interval_seconds must be >= 0")
        self._last_monotonic: float | None = None

    @classmethod
    def from_milliseconds(cls, delay_ms: float) -> "RequestSpacer":
        return cls(min_interval_seconds=float(delay_ms) / 1000.0)

    def wait(self) -> float:
        """Block until the interval since the previous call has elapsed.

        Returns the number of seconds slept (0 for the first call).
        """
        spacing_seconds = float(self.min_interval_seconds)
        now = time.monotonic()
        if spacing_seconds <= 0 or self._last_monotonic is None:
            self._last_monotonic = now
            return 0.0

        slept = 0.0
        remaining = spacing_seconds - (now - self._last_monotonic)
        if remaining > 0:
            time.sleep(remaining)
            slept = remaining
            now = time.monotonic()

        self._last_monotonic = now
        return slept
