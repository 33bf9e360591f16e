"""
Client-side request limiting for outbound AI calls.

Protects user-supplied (often free-tier) credentials from accidental overuse
with a strict sliding window: at most MAX_REQUESTS calls whose age is below
WINDOW_SECONDS. Capacity frees up one slot at a time as the oldest request
ages out.

Storage problems never block a request. An unreadable log counts as empty,
and a failed write is logged and dropped.
"""

import json
import math
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

from ai_bill_reader.logging_config import get_logger
from ai_bill_reader.storage.kv_store import RATE_LIMIT_KEY, KeyValueStore

log = get_logger(__name__)

MAX_REQUESTS = 5
WINDOW_SECONDS = 300
WINDOW_MS = WINDOW_SECONDS * 1000


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a limit check."""
    allowed: bool
    retry_after_seconds: int = 0


def _is_timestamp(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


class RateGovernor:
    """Sliding-window limiter over a persisted log of request timestamps.

    Timestamps are milliseconds since the epoch, stored in insertion order.
    """

    def __init__(self, store: KeyValueStore, clock: Optional[Callable[[], float]] = None):
        """
        Args:
            store: Key-value store holding the timestamp log
            clock: Returns the current time in seconds (defaults to time.time)
        """
        self.store = store
        self._clock = clock or time.time
        self._lock = threading.RLock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @contextmanager
    def critical_section(self) -> Iterator[None]:
        """Hold the governor lock across a check and the matching record."""
        with self._lock:
            yield

    def _read_log(self) -> List[int]:
        try:
            raw = self.store.get(RATE_LIMIT_KEY)
            if not raw:
                return []
            parsed = json.loads(raw)
        except Exception:
            log.exception("Could not read request timestamps; treating log as empty")
            return []
        if not isinstance(parsed, list):
            log.error("Request timestamp log is not a list; treating log as empty")
            return []
        return [int(ts) for ts in parsed if _is_timestamp(ts)]

    def _write_log(self, timestamps: List[int]) -> None:
        try:
            self.store.set(RATE_LIMIT_KEY, json.dumps(timestamps))
        except Exception:
            log.exception("Could not record request timestamp")

    @staticmethod
    def _prune(timestamps: List[int], now_ms: int) -> List[int]:
        return [ts for ts in timestamps if now_ms - ts < WINDOW_MS]

    def check_limit(self) -> RateLimitDecision:
        """Check whether another request fits in the current window.

        Returns:
            RateLimitDecision; when denied, retry_after_seconds is the wait
            until the oldest request in the window ages out
        """
        with self._lock:
            now = self._now_ms()
            recent = self._prune(self._read_log(), now)

        if len(recent) < MAX_REQUESTS:
            return RateLimitDecision(allowed=True)

        oldest = min(recent)
        retry_after = math.ceil((oldest + WINDOW_MS - now) / 1000)
        log.warning(f"Rate limit reached: {len(recent)} requests in the last {WINDOW_SECONDS}s")
        return RateLimitDecision(allowed=False, retry_after_seconds=retry_after)

    def record_request(self) -> None:
        """Append the current time to the log, pruning expired entries."""
        with self._lock:
            now = self._now_ms()
            timestamps = self._read_log()
            timestamps.append(now)
            self._write_log(self._prune(timestamps, now))

    def window_usage(self) -> List[int]:
        """Timestamps currently counted against the limit, oldest first."""
        with self._lock:
            return self._prune(self._read_log(), self._now_ms())
