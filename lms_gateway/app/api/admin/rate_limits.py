"""Admin endpoints for inspecting and resetting rate limit buckets."""

from typing import Any

from fastapi import APIRouter

from lms_gateway.app.api.dependencies import AdmissionControllerDep, SettingsDep
from lms_gateway.app.exceptions import BucketNotFoundError

router = APIRouter()


@router.get("")
async def get_rate_limit_overview(controller: AdmissionControllerDep) -> dict[str, Any]:
    """Registry size, per-class bucket counts and configured policies."""
    return controller.get_stats()


@router.post("/sweep")
async def sweep_idle_buckets(
    controller: AdmissionControllerDep,
    app_settings: SettingsDep,
) -> dict[str, int]:
    """Drop buckets idle longer than the configured threshold now."""
    removed = controller.sweep(app_settings.rate_limit_idle_seconds)
    return {"removed": removed, "remaining": len(controller.registry)}


@router.get("/{key}")
async def get_bucket(key: str, controller: AdmissionControllerDep) -> dict[str, Any]:
    """State of one bucket, e.g. ``auth:ip:10.0.0.1``."""
    state = controller.describe_bucket(key)
    if state is None:
        raise BucketNotFoundError(key)
    return state


@router.delete("/{key}")
async def reset_bucket(key: str, controller: AdmissionControllerDep) -> dict[str, Any]:
    """Forget a bucket so the client starts again with a full allowance."""
    if not controller.reset(key):
        raise BucketNotFoundError(key)
    return {"key": key, "reset": True}
