"""
Process-local fixed-window rate limiting store.

Entries are {key: {'count': int, 'reset_time': epoch_ms}}. Windows reset lazily when a
key is touched after its reset_time; expired keys are swept opportunistically.
Not shared between processes or hosts.
"""

import logging
import math
import random
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict

logger = logging.getLogger(__name__)

CLEANUP_PROBABILITY = 0.1


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    current: int
    remaining: int
    reset_time: int
    retry_after: int

    def headers(self) -> Dict[str, str]:
        out = {
            'X-RateLimit-Limit': str(self.limit),
            'X-RateLimit-Remaining': str(self.remaining),
            'X-RateLimit-Reset': str(self.reset_time),
        }
        if not self.allowed:
            out['Retry-After'] = str(self.retry_after)
        return out


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimitStore:
    def __init__(self, clock: Callable[[], int] = _now_ms, rng: Callable[[], float] = random.random):
        self._entries: Dict[str, dict] = {}
        self._lock = Lock()
        self.clock = clock
        self.rng = rng

    def hit(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        now = self.clock()
        if self.rng() < CLEANUP_PROBABILITY:
            self.cleanup(now)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now > entry['reset_time']:
                entry = {'count': 0, 'reset_time': now + window_ms}
                self._entries[key] = entry
            entry['count'] += 1
            count = entry['count']
            reset_time = entry['reset_time']
        allowed = count <= limit
        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            current=count,
            remaining=max(0, limit - count),
            reset_time=reset_time,
            retry_after=max(0, math.ceil((reset_time - now) / 1000)),
        )

    def cleanup(self, now: int = None) -> int:
        now = self.clock() if now is None else now
        with self._lock:
            expired = [k for k, v in self._entries.items() if now > v['reset_time']]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug('Cleaned up %d expired rate limit entries', len(expired))
        return len(expired)

    def reset(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)


RATE_LIMIT_STORE = RateLimitStore()

__all__ = ['RateLimitStore', 'RateLimitResult', 'RATE_LIMIT_STORE']
