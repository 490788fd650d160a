"""
OTP Cache
=========
In-memory shadow of outstanding challenges, used for fast-path verification
and the resend cooldown. Not authoritative: the remote store wins whenever
the cache has nothing to say (e.g. after a restart).
"""

import math
import time
from dataclasses import replace
from typing import Callable, Dict, Optional
import structlog

from .models import CacheKey, CacheStatus, OTPCacheEntry, ResendStatus

logger = structlog.get_logger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class OTPCache:
    """
    Process-local OTP cache keyed by (user id, channel).

    Expired entries are swept lazily on every access; there is no background timer.
    All access happens on the event loop thread, so last write wins.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        """
        Args:
            clock: Returns the current epoch time in milliseconds
        """
        self._clock = clock or _wall_clock_ms
        self._entries: Dict[CacheKey, OTPCacheEntry] = {}

    def now_ms(self) -> int:
        return self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    def sweep(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("otp_cache_swept", removed=len(expired))
        return len(expired)

    def get(self, key: CacheKey) -> Optional[OTPCacheEntry]:
        self.sweep()
        return self._entries.get(key)

    def put(self, key: CacheKey, entry: OTPCacheEntry) -> None:
        self._entries[key] = entry

    def discard(self, key: CacheKey) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def mark_verified(self, key: CacheKey) -> Optional[OTPCacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry = replace(entry, status=CacheStatus.VERIFIED)
        self._entries[key] = entry
        return entry

    def record_failure(self, key: CacheKey, max_attempts: int) -> Optional[OTPCacheEntry]:
        """
        Count a failed verification against the cached challenge.

        The entry flips to EXPIRED once the local ceiling is reached, which
        takes it out of the fast path until a new code is sent.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        status = entry.status
        attempts = entry.attempts + 1
        if attempts >= max_attempts and status is not CacheStatus.VERIFIED:
            status = CacheStatus.EXPIRED
            logger.warning("otp_cache_attempts_exhausted", channel=key[1].value, attempts=attempts)

        entry = replace(entry, attempts=attempts, status=status)
        self._entries[key] = entry
        return entry

    def resend_status(self, key: CacheKey, interval_ms: int) -> ResendStatus:
        """
        Whether a new code may be sent for this key, and how long to wait otherwise.
        """
        entry = self.get(key)
        if entry is None:
            return ResendStatus(can_send=True, wait_time_seconds=0)

        now = self._clock()
        elapsed = now - entry.last_sent_ms
        wait_ms = max(0, interval_ms - elapsed)

        return ResendStatus(
            can_send=elapsed >= interval_ms or entry.is_expired(now),
            wait_time_seconds=math.ceil(wait_ms / 1000),
        )
