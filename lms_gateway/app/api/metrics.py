"""Metrics and monitoring endpoints for the LMS gateway."""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from lms_gateway.app.api.dependencies import AdmissionControllerDep
from lms_gateway.app.middleware.auth import require_admin
from lms_gateway.app.services.metrics import get_metrics_collector

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics(controller: AdmissionControllerDep) -> PlainTextResponse:
    """Prometheus-compatible metrics endpoint (admin only)."""
    collector = get_metrics_collector()
    content = await collector.get_prometheus_metrics(controller.get_stats())
    return PlainTextResponse(
        content=content, media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@router.get("/stats")
async def gateway_stats(controller: AdmissionControllerDep) -> dict[str, Any]:
    """Admission statistics and registry state (admin only)."""
    collector = get_metrics_collector()
    return await collector.get_summary(controller.get_stats())
