"""Admin API package."""

from lms_gateway.app.api.admin.router import router

__all__ = ["router"]
