"""Rate limiting data models.

This module contains the value types shared by the token bucket, the
bucket registry and the admission controller.
"""

import enum
from dataclasses import dataclass
from typing import Optional, Tuple


class TrafficClass(str, enum.Enum):
    """Endpoint categories that share one rate limit policy."""
    AUTH = "auth"
    UPLOAD = "upload"
    API = "api"


@dataclass(frozen=True)
class Bandwidth:
    """One limit of a bucket: burst capacity plus continuous refill rate.

    Attributes:
        capacity: Maximum tokens the bandwidth can hold
        refill_per_second: Tokens restored per second of elapsed time
    """
    capacity: float
    refill_per_second: float

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("Bandwidth capacity must be positive")
        if self.refill_per_second <= 0:
            raise ValueError("Bandwidth refill rate must be positive")

    @classmethod
    def per_period(cls, limit: int, period_seconds: float) -> "Bandwidth":
        """``limit`` requests per ``period_seconds``, refilled continuously."""
        return cls(capacity=float(limit), refill_per_second=limit / period_seconds)

    @classmethod
    def per_minute(cls, limit: int) -> "Bandwidth":
        return cls.per_period(limit, 60.0)

    @classmethod
    def per_hour(cls, limit: int) -> "Bandwidth":
        return cls.per_period(limit, 3600.0)


@dataclass(frozen=True)
class BucketPolicy:
    """The set of bandwidths every bucket of a traffic class is built with.

    A request is admitted only when each bandwidth can spare a token.
    """
    bandwidths: Tuple[Bandwidth, ...]

    def __post_init__(self) -> None:
        if not self.bandwidths:
            raise ValueError("BucketPolicy needs at least one bandwidth")

    @property
    def capacity(self) -> int:
        """Burst size of a fresh bucket (the tightest capacity)."""
        return int(min(bw.capacity for bw in self.bandwidths))

    @classmethod
    def from_limits(cls, per_minute: int, per_hour: int = 0) -> "BucketPolicy":
        """Build a minute/hour policy. ``per_hour=0`` leaves out the hourly limit."""
        bandwidths = [Bandwidth.per_minute(per_minute)]
        if per_hour > 0:
            bandwidths.append(Bandwidth.per_hour(per_hour))
        return cls(bandwidths=tuple(bandwidths))

    def to_dict(self) -> dict:
        return {
            "capacity": self.capacity,
            "bandwidths": [
                {"capacity": bw.capacity, "refill_per_second": bw.refill_per_second}
                for bw in self.bandwidths
            ],
        }


@dataclass(frozen=True)
class ConsumptionProbe:
    """Outcome of one attempt to take tokens from a bucket."""
    consumed: bool
    remaining: int
    wait_seconds: float = 0.0


@dataclass(frozen=True)
class AdmissionDecision:
    """Result of an admission check.

    ``traffic_class`` is None when the request was never metered, either
    because the path is exempt or because rate limiting is disabled.
    """
    allowed: bool
    traffic_class: Optional[TrafficClass] = None
    key: Optional[str] = None
    remaining: Optional[int] = None
    retry_after: Optional[int] = None

    @property
    def metered(self) -> bool:
        return self.traffic_class is not None

    @classmethod
    def exempt(cls) -> "AdmissionDecision":
        return cls(allowed=True)

    @classmethod
    def allow(cls, traffic_class: TrafficClass, key: str, remaining: int) -> "AdmissionDecision":
        return cls(allowed=True, traffic_class=traffic_class, key=key, remaining=remaining)

    @classmethod
    def deny(cls, traffic_class: TrafficClass, key: str, retry_after: int) -> "AdmissionDecision":
        return cls(
            allowed=False,
            traffic_class=traffic_class,
            key=key,
            remaining=0,
            retry_after=retry_after,
        )
