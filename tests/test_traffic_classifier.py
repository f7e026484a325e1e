"""Tests for path classification."""

import pytest

from lms_gateway.app.services.rate_limit import (
    ClassificationRule,
    TrafficClass,
    TrafficClassifier,
    default_rules,
)


@pytest.fixture
def classifier():
    return TrafficClassifier()


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/api/auth/login", TrafficClass.AUTH),
        ("/api/auth/register", TrafficClass.AUTH),
        ("/api/lms/upload/video", TrafficClass.UPLOAD),
        ("/api/lms/courses/7/upload", TrafficClass.UPLOAD),
        ("/files/upload", TrafficClass.UPLOAD),
        ("/api/lms/courses", TrafficClass.API),
        ("/api/profile/me", TrafficClass.API),
        ("/ui/dashboard", None),
        ("/health", None),
        ("/", None),
    ],
)
def test_default_classification(classifier, path, expected):
    assert classifier.classify(path) == expected


def test_auth_wins_over_upload(classifier):
    # Matches both the auth prefix and the upload segment
    assert classifier.classify("/api/auth/upload-avatar") == TrafficClass.AUTH


def test_auth_prefix_requires_trailing_segment(classifier):
    assert classifier.classify("/api/authors") == TrafficClass.API


def test_classification_is_stable(classifier):
    results = {classifier.classify("/api/lms/quizzes/3") for _ in range(100)}
    assert results == {TrafficClass.API}


def test_custom_prefixes():
    classifier = TrafficClassifier(
        default_rules(api_prefix="/v2/", auth_prefix="/v2/login/", upload_prefix="/v2/files/")
    )
    assert classifier.classify("/v2/login/token") == TrafficClass.AUTH
    assert classifier.classify("/v2/files/1") == TrafficClass.UPLOAD
    assert classifier.classify("/v2/courses") == TrafficClass.API
    assert classifier.classify("/api/courses") is None


def test_first_matching_rule_wins():
    classifier = TrafficClassifier([
        ClassificationRule("everything", lambda path: True, TrafficClass.API),
        ClassificationRule("never-reached", lambda path: True, TrafficClass.AUTH),
    ])
    assert classifier.classify("/api/auth/login") == TrafficClass.API
