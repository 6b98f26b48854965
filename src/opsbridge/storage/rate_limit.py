"""Summary: Minimum-interval rate limiter persisted across adapter processes.

Importance: Keeps quota-limited APIs under their requests-per-second ceiling even though each call is a new process.
Alternatives: Token bucket in a long-lived daemon.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from opsbridge.storage.json_store import JsonFileStore


logger = logging.getLogger(__name__)

STATE_FILENAME = "rate-limit.json"


@dataclass(frozen=True)
class RateLimitResult:
    """Summary: What one acquire call did."""

    key: str
    min_interval_ms: int
    slept_ms: int
    state_path: str

    def to_json(self) -> dict[str, object]:
        return {
            "key": self.key,
            "minIntervalMs": self.min_interval_ms,
            "sleptMs": self.slept_ms,
            "statePath": self.state_path,
        }


class RateLimiter:
    """Summary: Sleeps until the minimum interval since the last call on a key has passed.

    Importance: First-come-first-served; no queueing beyond the process's own sleep.
    Alternatives: Reject early calls instead of sleeping.
    """

    def __init__(
        self,
        state_dir: Path,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = JsonFileStore(state_dir / STATE_FILENAME, section="lastByKey", stamp_field="updatedAt")
        self._clock = clock
        self._sleep = sleep

    def acquire(self, key: str, min_interval_ms: int) -> RateLimitResult:
        """Summary: Wait out the remaining interval for a key, then stamp it.

        Importance: The stamp is written after the wait so the next caller measures from now.
        Alternatives: Stamp before sleeping.
        """

        if min_interval_ms <= 0:
            return RateLimitResult(key=key, min_interval_ms=0, slept_ms=0, state_path=str(self._store.path))
        last = self._store.get(key)
        last_ms = last if isinstance(last, (int, float)) else 0
        now_ms = self._now_ms()
        wait_ms = max(0, int(min_interval_ms - (now_ms - last_ms)))
        if wait_ms > 0:
            logger.info("Rate limit %s: sleeping %s ms.", key, wait_ms)
            self._sleep(wait_ms / 1000)
        self._store.put(key, self._now_ms())
        return RateLimitResult(
            key=key,
            min_interval_ms=min_interval_ms,
            slept_ms=wait_ms,
            state_path=str(self._store.path),
        )

    def last_stamp(self, key: str) -> int | None:
        value = self._store.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return int(value) if math.isfinite(value) else None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
