"""API endpoints package for the LMS gateway."""

from lms_gateway.app.api.admin import router as admin_router
from lms_gateway.app.api.metrics import router as metrics_router

__all__ = [
    "admin_router",
    "metrics_router",
]
