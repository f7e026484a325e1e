"""Middleware package for the LMS gateway."""

from lms_gateway.app.middleware.auth import require_admin
from lms_gateway.app.middleware.rate_limit import RateLimitMiddleware, resolve_client_identity
from lms_gateway.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "require_admin",
    "RateLimitMiddleware",
    "resolve_client_identity",
    "RequestIdMiddleware",
    "get_request_id",
]
