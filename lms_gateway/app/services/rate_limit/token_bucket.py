"""Thread-safe token bucket with one or more bandwidths."""

import math
import threading
from typing import Any, Dict, List, Optional

from .models import BucketPolicy, ConsumptionProbe


class TokenBucket:
    """Token bucket for one (traffic class, client) pair.

    Each bandwidth of the policy keeps its own fractional token count. All
    counts start at capacity, refill continuously from elapsed time and are
    capped at capacity. Consumption succeeds only when every bandwidth holds
    enough tokens, and then takes from all of them.

    Refill-then-consume runs under a per-bucket lock so concurrent requests
    for the same key cannot both spend the last token.

    Timestamps are plain floats from the caller's clock (``time.monotonic``
    in production) so tests can drive time explicitly.
    """

    def __init__(self, policy: BucketPolicy, now: float):
        self.policy = policy
        self._tokens: List[float] = [bw.capacity for bw in policy.bandwidths]
        self._last_refill = now
        self._last_used = now
        self._lock = threading.Lock()

    @property
    def last_used(self) -> float:
        return self._last_used

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed <= 0:
            # Clock did not advance; keep the old timestamp
            return
        for i, bw in enumerate(self.policy.bandwidths):
            self._tokens[i] = min(bw.capacity, self._tokens[i] + elapsed * bw.refill_per_second)
        self._last_refill = now

    def _available(self) -> int:
        return int(math.floor(min(self._tokens)))

    def _wait_for(self, tokens: float) -> float:
        waits = [
            (tokens - current) / bw.refill_per_second
            for current, bw in zip(self._tokens, self.policy.bandwidths)
            if current < tokens
        ]
        return max(waits, default=0.0)

    def try_consume(self, now: float, tokens: int = 1) -> ConsumptionProbe:
        """Refill from elapsed time, then take ``tokens`` if every bandwidth allows it.

        Args:
            now: Current clock reading
            tokens: Number of tokens to take

        Returns:
            ConsumptionProbe with the outcome, the tokens left and, on
            refusal, how long until the request could succeed
        """
        with self._lock:
            self._refill(now)
            self._last_used = now
            if all(current >= tokens for current in self._tokens):
                self._tokens = [current - tokens for current in self._tokens]
                return ConsumptionProbe(consumed=True, remaining=self._available())
            return ConsumptionProbe(
                consumed=False,
                remaining=self._available(),
                wait_seconds=self._wait_for(tokens),
            )

    def available_tokens(self, now: Optional[float] = None) -> int:
        """Whole tokens available, refilled to ``now`` when given."""
        with self._lock:
            if now is not None:
                self._refill(now)
            return self._available()

    def snapshot(self, now: float) -> Dict[str, Any]:
        """Read-only view of the bucket state as of ``now``.

        Refill is computed on a copy so inspecting a bucket never changes it.
        """
        with self._lock:
            elapsed = max(0.0, now - self._last_refill)
            levels = [
                min(bw.capacity, current + elapsed * bw.refill_per_second)
                for current, bw in zip(self._tokens, self.policy.bandwidths)
            ]
            idle = max(0.0, now - self._last_used)
        return {
            "available_tokens": int(math.floor(min(levels))),
            "idle_seconds": round(idle, 3),
            "bandwidths": [
                {
                    "capacity": bw.capacity,
                    "refill_per_second": bw.refill_per_second,
                    "tokens": round(level, 3),
                }
                for level, bw in zip(levels, self.policy.bandwidths)
            ],
        }
