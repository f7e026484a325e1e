import hmac

from fastapi import HTTPException, Request

from lms_gateway.app.core.config import settings as default_settings


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: The incoming request

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth[len("Bearer "):].strip()


def require_admin(request: Request) -> str:
    """Validate the admin token for operational endpoints.

    The expected token comes from the settings the app was built with,
    falling back to the environment for apps not made by ``create_app``.

    Raises:
        HTTPException: 401 if the token is missing, wrong, or no admin token
            is configured
    """
    app_settings = getattr(request.app.state, "settings", default_settings)
    expected_token = app_settings.admin_token
    token = get_bearer_token(request) or ""

    # Always run the comparison so timing does not reveal which check failed
    valid = hmac.compare_digest(token.encode(), expected_token.encode())
    if not expected_token or not valid:
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")

    return "admin"
