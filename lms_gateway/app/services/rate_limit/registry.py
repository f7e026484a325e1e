"""Process-scoped registry of token buckets."""

import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from lms_gateway.app.core.logging import get_logger

from .models import BucketPolicy
from .token_bucket import TokenBucket

logger = get_logger(__name__)


class BucketRegistry:
    """Concurrent key -> TokenBucket map with atomic get-or-create.

    Memory bounds:
    - OrderedDict in access order, so the least recently used bucket is first
    - At most ``max_buckets`` entries; inserting past the bound evicts the LRU ones
    - ``sweep()`` drops buckets that have been idle longer than a threshold

    The registry lock covers only map lookups and inserts. Token arithmetic
    happens under each bucket's own lock, so unrelated clients never wait on
    each other beyond a dict operation.
    """

    DEFAULT_MAX_BUCKETS = 10000

    def __init__(
        self,
        max_buckets: int = DEFAULT_MAX_BUCKETS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_buckets < 1:
            raise ValueError("max_buckets must be at least 1")
        self._max_buckets = max_buckets
        self._clock = clock
        self._buckets: "OrderedDict[str, TokenBucket]" = OrderedDict()
        self._lock = threading.Lock()
        self.evictions = 0

    @property
    def max_buckets(self) -> int:
        return self._max_buckets

    def __len__(self) -> int:
        return len(self._buckets)

    def __contains__(self, key: object) -> bool:
        return key in self._buckets

    def get_or_create(self, key: str, policy: BucketPolicy) -> TokenBucket:
        """Return the bucket for ``key``, creating a full one on first use.

        Concurrent first requests for the same key all receive the same
        bucket.
        """
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is not None:
                self._buckets.move_to_end(key)
                return bucket

            bucket = TokenBucket(policy, now=self._clock())
            self._buckets[key] = bucket
            self._enforce_limit()
            return bucket

    def _enforce_limit(self) -> None:
        # Caller holds self._lock
        while len(self._buckets) > self._max_buckets:
            evicted_key, _ = self._buckets.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted least recently used bucket {evicted_key}")

    def get(self, key: str) -> Optional[TokenBucket]:
        """Look up a bucket without creating it or touching its LRU position."""
        with self._lock:
            return self._buckets.get(key)

    def remove(self, key: str) -> bool:
        with self._lock:
            return self._buckets.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._buckets.keys())

    def sweep(self, idle_seconds: float, now: Optional[float] = None) -> int:
        """Remove buckets not used for more than ``idle_seconds``.

        Returns:
            Number of buckets removed
        """
        now = self._clock() if now is None else now
        with self._lock:
            expired = [
                key for key, bucket in self._buckets.items()
                if now - bucket.last_used > idle_seconds
            ]
            for key in expired:
                del self._buckets[key]
        if expired:
            logger.info(f"Swept {len(expired)} idle rate limit buckets")
        return len(expired)

    def count_by_prefix(self) -> Dict[str, int]:
        """Bucket counts grouped by the part of the key before the first ':'."""
        counts: Dict[str, int] = {}
        for key in self.keys():
            prefix = key.split(":", 1)[0]
            counts[prefix] = counts.get(prefix, 0) + 1
        return counts
