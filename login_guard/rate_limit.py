"""In-memory sliding window limiter with a hard lockout period."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class RateLimitConfig(BaseModel):
    """Attempt budget and lockout behaviour for one named use of the limiter.

    Invalid values are rejected here, so every call made with a constructed
    policy is well defined.
    """

    model_config = ConfigDict(frozen=True)

    window_ms: float = Field(..., gt=0)
    max_attempts: int = Field(..., ge=1)
    block_duration_ms: float = Field(..., ge=0)


@dataclass
class AttemptRecord:
    key: str
    timestamps: Deque[float] = field(default_factory=deque)
    blocked_until: Optional[float] = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and now < self.blocked_until

    def prune(self, now: float, window_ms: float) -> None:
        cutoff = now - window_ms
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


@dataclass(frozen=True)
class LimiterStats:
    tracked_keys: int
    blocked_keys: int


class RateLimiter:
    """Per-key attempt tracker deciding admission against a policy.

    Once the attempts inside ``window_ms`` exceed ``max_attempts`` the key is
    locked out for ``block_duration_ms``; while locked out every call is
    rejected without touching the window.
    """

    def __init__(self, clock: Clock = monotonic_ms) -> None:
        self._clock = clock
        self._records: Dict[str, AttemptRecord] = {}
        self._lock = threading.Lock()

    def is_allowed(self, key: str, config: RateLimitConfig) -> bool:
        """Record an attempt for ``key`` and return whether it is admitted."""

        return self.record_attempt(key, config)

    def record_attempt(self, key: str, config: RateLimitConfig) -> bool:
        _require_key(key)
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = AttemptRecord(key=key)
                self._records[key] = record
            if record.is_blocked(now):
                return False
            record.blocked_until = None
            record.prune(now, config.window_ms)
            record.timestamps.append(now)
            if len(record.timestamps) <= config.max_attempts:
                return True
            record.blocked_until = now + config.block_duration_ms
            record.timestamps.clear()
        logger.warning(
            "attempt budget exceeded",
            extra={"key": key, "block_duration_ms": config.block_duration_ms},
        )
        return False

    def check_admission(self, key: str, config: RateLimitConfig) -> bool:
        """Return whether a new attempt for ``key`` would be admitted, without recording it."""

        return self.remaining_attempts(key, config) > 0

    def remaining_attempts(self, key: str, config: RateLimitConfig) -> int:
        _require_key(key)
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return config.max_attempts
            if record.is_blocked(now):
                return 0
            cutoff = now - config.window_ms
            in_window = sum(1 for stamp in record.timestamps if stamp > cutoff)
            return max(0, config.max_attempts - in_window)

    def get_time_until_unblocked(self, key: str) -> float:
        """Milliseconds until ``key`` leaves its lockout, ``0`` when not blocked."""

        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None or record.blocked_until is None:
                return 0.0
            return max(0.0, record.blocked_until - now)

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def stats(self) -> LimiterStats:
        now = self._clock()
        with self._lock:
            blocked = sum(1 for record in self._records.values() if record.is_blocked(now))
            return LimiterStats(tracked_keys=len(self._records), blocked_keys=blocked)

    def purge_stale(self, max_idle_ms: float) -> int:
        """Drop records with no active lockout and no attempt in the last ``max_idle_ms``.

        Returns the number of records removed.
        """

        if max_idle_ms <= 0:
            raise ValueError("max_idle_ms must be positive")
        now = self._clock()
        cutoff = now - max_idle_ms
        with self._lock:
            stale = [
                key
                for key, record in self._records.items()
                if not record.is_blocked(now)
                and (not record.timestamps or record.timestamps[-1] <= cutoff)
            ]
            for key in stale:
                del self._records[key]
        if stale:
            logger.info("purged stale rate limit records", extra={"purged": len(stale)})
        return len(stale)


def _require_key(key: str) -> None:
    if not key:
        raise ValueError("identity key must not be empty")
