"""Handler for POST /api/collect-email."""

from __future__ import annotations

import uuid

from models.api import CollectEmailRequest
from utils.error_handling import AppError, to_response
from utils.http import parse_body, result_response
from utils.logging_config import get_logger

logger = get_logger(__name__)


def _get_engine():
    """Lazy-load the engine."""
    from services.wiring import get_engine
    return get_engine()


def lambda_handler(event, context):
    """Store an email and link it to the visitor's session when one is given."""
    correlation_id = str(uuid.uuid4())
    try:
        request = parse_body(event, CollectEmailRequest)
    except AppError as exc:
        return to_response(exc, correlation_id)

    result = _get_engine().identities.capture(
        email=request.email,
        shop_domain=request.shop_domain,
        session_token=request.session_token,
        quiz_responses=request.quiz_responses,
        popup_id=request.popup_id,
    )
    logger.info(
        "collect-email handled",
        extra={
            "correlation_id": correlation_id,
            "ok": result.ok,
            "has_session": bool(request.session_token),
        },
    )
    return result_response(result, correlation_id)
