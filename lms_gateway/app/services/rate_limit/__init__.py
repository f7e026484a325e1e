"""Token-bucket admission control for the LMS API.

Requests are classified into AUTH, UPLOAD or API traffic, and each
(class, client) pair gets its own in-memory token bucket.
"""

from .classifier import ClassificationRule, TrafficClassifier, default_rules
from .models import (
    AdmissionDecision,
    Bandwidth,
    BucketPolicy,
    ConsumptionProbe,
    TrafficClass,
)
from .registry import BucketRegistry
from .service import AdmissionController, BucketSweeper
from .token_bucket import TokenBucket

__all__ = [
    "AdmissionController",
    "AdmissionDecision",
    "Bandwidth",
    "BucketPolicy",
    "BucketRegistry",
    "BucketSweeper",
    "ClassificationRule",
    "ConsumptionProbe",
    "TokenBucket",
    "TrafficClass",
    "TrafficClassifier",
    "default_rules",
]
