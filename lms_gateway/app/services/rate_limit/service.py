"""Admission control for inbound API requests.

The controller classifies a request path into a traffic class, finds the
token bucket for that class and client, and tries to take one token.
It is built once per process (see ``main.create_app``) and handed to the
rate limit middleware and the admin endpoints.
"""

import asyncio
import math
import time
from typing import Any, Callable, Dict, Mapping, Optional

from lms_gateway.app.core.config import Settings
from lms_gateway.app.core.logging import get_logger

from .classifier import TrafficClassifier, default_rules
from .models import AdmissionDecision, BucketPolicy, TrafficClass
from .registry import BucketRegistry

logger = get_logger(__name__)


class AdmissionController:
    """Token-bucket admission control keyed by traffic class and client.

    Usage:
        controller = AdmissionController.from_settings(settings)
        decision = controller.admit("/api/auth/login", "ip:1.2.3.4")
        if not decision.allowed:
            # reply 429, retry after decision.retry_after seconds
    """

    def __init__(
        self,
        policies: Mapping[TrafficClass, BucketPolicy],
        classifier: Optional[TrafficClassifier] = None,
        registry: Optional[BucketRegistry] = None,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the controller.

        Args:
            policies: Bucket policy for each traffic class
            classifier: Path classifier (defaults to the LMS rule set)
            registry: Bucket registry (a new one sharing ``clock`` by default)
            enabled: When False every request is admitted untouched
            clock: Monotonic time source in seconds
        """
        missing = [tc.value for tc in TrafficClass if tc not in policies]
        if missing:
            raise ValueError(f"Missing bucket policy for traffic classes: {missing}")
        self._policies = dict(policies)
        self._classifier = classifier or TrafficClassifier()
        self._clock = clock
        self.registry = registry or BucketRegistry(clock=clock)
        self.enabled = enabled

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.monotonic) -> "AdmissionController":
        policies = {
            TrafficClass.API: BucketPolicy.from_limits(
                settings.rate_limit_api_requests_per_minute,
                settings.rate_limit_api_requests_per_hour,
            ),
            TrafficClass.AUTH: BucketPolicy.from_limits(
                settings.rate_limit_auth_requests_per_minute,
                settings.rate_limit_auth_requests_per_hour,
            ),
            TrafficClass.UPLOAD: BucketPolicy.from_limits(
                settings.rate_limit_upload_requests_per_minute,
                settings.rate_limit_upload_requests_per_hour,
            ),
        }
        classifier = TrafficClassifier(
            default_rules(
                api_prefix=settings.rate_limit_api_prefix,
                auth_prefix=settings.rate_limit_auth_prefix,
                upload_prefix=settings.rate_limit_upload_prefix,
                upload_segment=settings.rate_limit_upload_segment,
            )
        )
        registry = BucketRegistry(max_buckets=settings.rate_limit_max_buckets, clock=clock)
        return cls(
            policies=policies,
            classifier=classifier,
            registry=registry,
            enabled=settings.rate_limit_enabled,
            clock=clock,
        )

    @property
    def policies(self) -> Dict[TrafficClass, BucketPolicy]:
        return dict(self._policies)

    @staticmethod
    def bucket_key(traffic_class: TrafficClass, client_identity: str) -> str:
        return f"{traffic_class.value}:{client_identity}"

    def classify(self, path: str) -> Optional[TrafficClass]:
        return self._classifier.classify(path)

    def admit(self, path: str, client_identity: str) -> AdmissionDecision:
        """Decide whether a request may proceed.

        Never raises: a denial is an ordinary return value.

        Args:
            path: Request path, used only for classification
            client_identity: ``user:<name>`` or ``ip:<address>``

        Returns:
            AdmissionDecision. Exempt paths and a disabled controller give an
            unmetered allow with no bucket touched.
        """
        if not self.enabled:
            return AdmissionDecision.exempt()

        traffic_class = self._classifier.classify(path)
        if traffic_class is None:
            return AdmissionDecision.exempt()

        key = self.bucket_key(traffic_class, client_identity)
        bucket = self.registry.get_or_create(key, self._policies[traffic_class])
        # Eviction, sweep or reset may drop the bucket before the consume below.
        # That token is then lost and the client's next request starts full; accepted.
        probe = bucket.try_consume(self._clock())

        if probe.consumed:
            return AdmissionDecision.allow(traffic_class, key, probe.remaining)

        # Rounded first so float noise (12.000000000000002) does not add a second
        retry_after = max(1, math.ceil(round(probe.wait_seconds, 6)))
        return AdmissionDecision.deny(traffic_class, key, retry_after)

    def sweep(self, idle_seconds: float) -> int:
        return self.registry.sweep(idle_seconds, now=self._clock())

    def reset(self, key: str) -> bool:
        """Forget the bucket for ``key``; the next request starts full."""
        removed = self.registry.remove(key)
        if removed:
            logger.info(f"Rate limit bucket reset: {key}")
        return removed

    def describe_bucket(self, key: str) -> Optional[Dict[str, Any]]:
        bucket = self.registry.get(key)
        if bucket is None:
            return None
        state = bucket.snapshot(self._clock())
        state["key"] = key
        state["traffic_class"] = key.split(":", 1)[0]
        return state

    def get_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "buckets": len(self.registry),
            "max_buckets": self.registry.max_buckets,
            "evictions": self.registry.evictions,
            "buckets_by_class": self.registry.count_by_prefix(),
            "policies": {tc.value: policy.to_dict() for tc, policy in self._policies.items()},
        }


class BucketSweeper:
    """Background task that periodically drops idle buckets.

    Usage:
        sweeper = BucketSweeper(controller, interval_seconds=300, idle_seconds=7200)
        await sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(
        self,
        controller: AdmissionController,
        interval_seconds: float,
        idle_seconds: float,
    ):
        self._controller = controller
        self._interval = interval_seconds
        self._idle_seconds = idle_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Bucket sweeper started (interval={self._interval}s, idle={self._idle_seconds}s)"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Bucket sweeper stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                self.sweep_once()

    def sweep_once(self) -> int:
        try:
            return self._controller.sweep(self._idle_seconds)
        except Exception:
            # Keep the sweeper alive; the next interval retries
            logger.exception("Bucket sweep failed")
            return 0
