"""Path to traffic class mapping.

Rules are evaluated in order and the first matching rule wins, so the
order of the rule list is part of the policy: auth endpoints are matched
before uploads, and uploads before the generic API prefix.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .models import TrafficClass


@dataclass(frozen=True)
class ClassificationRule:
    """A named predicate over the request path and the class it selects."""
    name: str
    matches: Callable[[str], bool]
    traffic_class: TrafficClass


def default_rules(
    api_prefix: str = "/api/",
    auth_prefix: str = "/api/auth/",
    upload_prefix: str = "/api/lms/upload/",
    upload_segment: str = "/upload",
) -> list[ClassificationRule]:
    """The LMS rule set: auth, then upload, then everything under the API prefix.

    The upload rule also fires for paths outside the API prefix that contain
    the upload segment.
    """
    return [
        ClassificationRule(
            name="auth-prefix",
            matches=lambda path: path.startswith(auth_prefix),
            traffic_class=TrafficClass.AUTH,
        ),
        ClassificationRule(
            name="upload",
            matches=lambda path: path.startswith(upload_prefix) or upload_segment in path,
            traffic_class=TrafficClass.UPLOAD,
        ),
        ClassificationRule(
            name="api-prefix",
            matches=lambda path: path.startswith(api_prefix),
            traffic_class=TrafficClass.API,
        ),
    ]


class TrafficClassifier:
    """First-match-wins dispatch over an ordered list of rules."""

    def __init__(self, rules: Optional[Sequence[ClassificationRule]] = None):
        self._rules = tuple(rules) if rules is not None else tuple(default_rules())

    @property
    def rules(self) -> tuple[ClassificationRule, ...]:
        return self._rules

    def classify(self, path: str) -> Optional[TrafficClass]:
        """Return the class of ``path``, or None when the path is exempt."""
        for rule in self._rules:
            if rule.matches(path):
                return rule.traffic_class
        return None
