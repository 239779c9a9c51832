"""
Single entrypoint Lambda that routes HTTP API requests to thin handler modules.

Why one Lambda?
- Keeps the warm popup cache and storage clients shared across routes.
- Simpler to deploy while still keeping code organized by delegating to modules.
"""

import uuid
from typing import Callable, Dict, Tuple

from utils.error_handling import InternalError, json_response, to_response
from utils.logging_config import get_logger

from . import analytics_events, collect_email, discount, health_check, popup_check, session

logger = get_logger(__name__)

# Exact path -> (method, handler). Every path also answers OPTIONS preflight.
ROUTES: Dict[str, Tuple[str, Callable]] = {
    "/health": ("GET", health_check.lambda_handler),
    "/api/session/create": ("POST", session.create_handler),
    "/api/session/validate": ("POST", session.validate_handler),
    "/api/session/progress": ("POST", session.progress_handler),
    "/api/discount/generate": ("POST", discount.generate_handler),
    "/api/discount/validate": ("POST", discount.validate_handler),
    "/api/collect-email": ("POST", collect_email.lambda_handler),
    "/api/popup-check": ("POST", popup_check.lambda_handler),
    "/api/analytics/events": ("POST", analytics_events.lambda_handler),
}


def lambda_handler(event, context):
    """
    Entry point invoked by API Gateway HTTP API.

    The event contains the HTTP method and path; we route it to the correct
    handler while keeping shared setup (logging, error handling) centralized.
    """
    http = event.get("requestContext", {}).get("http", {})
    method = http.get("method", "").upper()
    path = http.get("path", "")
    if len(path) > 1:
        path = path.rstrip("/")

    route = ROUTES.get(path)
    if route is None:
        return json_response(404, {"message": "Route not found", "route": f"{method} {path}"})

    allowed_method, handler = route
    if method == "OPTIONS":
        return json_response(200, None)
    if method != allowed_method:
        return json_response(405, {"message": "Method not allowed", "allowed": allowed_method})

    try:
        return handler(event, context)
    except Exception:
        correlation_id = str(uuid.uuid4())
        logger.exception(
            "Unhandled error", extra={"route": f"{method} {path}", "correlation_id": correlation_id}
        )
        return to_response(InternalError(), correlation_id)
