"""Rate limiting middleware for the LMS API.

Every HTTP request passes through the admission controller before it
reaches a route. Admitted, metered requests carry rate limit headers on
the way out; denied requests are answered here with a 429.
"""

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from lms_gateway.app.core.logging import get_log_context, get_logger
from lms_gateway.app.exceptions import RateLimitExceededError
from lms_gateway.app.middleware.request_id import get_request_id
from lms_gateway.app.services.metrics import get_metrics_collector
from lms_gateway.app.services.rate_limit import AdmissionController

logger = get_logger(__name__)

# The gateway's own operational endpoints are never metered
CONTROL_PLANE_PATHS = ("/admin", "/metrics", "/stats", "/health")


def is_control_plane_path(path: str, prefixes: tuple[str, ...] = CONTROL_PLANE_PATHS) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in prefixes)


def _user_identity(user) -> str | None:
    # BaseUser.identity raises NotImplementedError unless a subclass defines it
    try:
        identity = user.identity
    except (AttributeError, NotImplementedError):
        identity = None
    return identity or getattr(user, "display_name", None)


def _principal_name(request: Request) -> str | None:
    principal = getattr(request.state, "principal", None)
    if principal:
        return str(principal)

    # Starlette AuthenticationMiddleware puts the user in the scope
    user = request.scope.get("user")
    if user is not None and getattr(user, "is_authenticated", False):
        name = _user_identity(user)
        if name:
            return str(name)
    return None


def resolve_client_identity(request: Request) -> str:
    """Get the rate limit identity of the caller.

    Order of preference:
    1. Authenticated principal -> ``user:<name>``
    2. First address in X-Forwarded-For -> ``ip:<address>``
    3. X-Real-IP -> ``ip:<address>``
    4. Transport peer address -> ``ip:<address>``

    Args:
        request: FastAPI request object

    Returns:
        Client identity string
    """
    principal = _principal_name(request)
    if principal:
        return f"user:{principal}"

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return f"ip:{first_hop}"

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return f"ip:{real_ip.strip()}"

    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce per-client, per-traffic-class rate limits.

    Both X-RateLimit-Limit and X-RateLimit-Remaining carry the tokens left
    after this request, matching what existing LMS clients read.
    """

    def __init__(
        self,
        app,
        controller: AdmissionController,
        exempt_paths: tuple[str, ...] = CONTROL_PLANE_PATHS,
    ):
        super().__init__(app)
        self.controller = controller
        self.exempt_paths = exempt_paths

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if is_control_plane_path(path, self.exempt_paths):
            return await call_next(request)

        client_id = resolve_client_identity(request)
        decision = self.controller.admit(path, client_id)

        await get_metrics_collector().record_admission(decision)

        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded for client: {client_id} on path: {path}",
                extra=get_log_context(
                    request_id=get_request_id(request),
                    client_id=client_id,
                    traffic_class=decision.traffic_class.value,
                    bucket_key=decision.key,
                    path=path,
                    method=request.method,
                    retry_after=decision.retry_after,
                ),
            )
            error = RateLimitExceededError(retry_after=decision.retry_after)
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response(),
                headers=error.headers,
            )

        response = await call_next(request)

        if decision.metered:
            response.headers["X-RateLimit-Limit"] = str(decision.remaining)
            response.headers["X-RateLimit-Remaining"] = str(decision.remaining)

        return response
