from fastapi import APIRouter, Depends

from lms_gateway.app.middleware.auth import require_admin

from . import rate_limits

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

router.include_router(rate_limits.router, prefix="/rate-limits", tags=["admin-rate-limits"])
