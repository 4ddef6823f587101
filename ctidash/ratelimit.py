# ctidash/ratelimit.py
import logging
import math
import threading
import time

logger = logging.getLogger(__name__)


class FixedWindowRateLimiter:
    """In-process limiter: a key's window opens on its first hit and lasts ``window`` seconds."""

    def __init__(self, max_requests, window, clock=time.monotonic, name="rate", prune_every=1000):
        self.max_requests = max_requests
        self.window = window
        self.clock = clock
        self.name = name
        self.prune_every = prune_every
        self._hits = {}
        self._calls = 0
        self._lock = threading.Lock()

    def hit(self, key):
        """Count one request for ``key``. Returns ``(allowed, retry_after_seconds)``."""
        now = self.clock()
        with self._lock:
            self._calls += 1
            if self._calls >= self.prune_every:
                self._prune(now)
            count, reset_at = self._hits.get(key, (0, 0.0))
            if now >= reset_at:
                self._hits[key] = (1, now + self.window)
                return True, 0
            if count >= self.max_requests:
                retry_after = max(1, math.ceil(reset_at - now))
                logger.info("%s limit hit for %s (%d/%d)", self.name, key, count, self.max_requests)
                return False, retry_after
            self._hits[key] = (count + 1, reset_at)
            return True, 0

    def _prune(self, now):
        # caller holds the lock
        expired = [k for k, (_, reset_at) in self._hits.items() if now >= reset_at]
        for k in expired:
            del self._hits[k]
        self._calls = 0
        if expired:
            logger.debug("%s limiter pruned %d expired keys", self.name, len(expired))

    def __len__(self):
        return len(self._hits)

    def reset(self, key=None):
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
