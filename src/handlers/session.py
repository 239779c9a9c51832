"""Handlers for POST /api/session/create, /api/session/validate and /api/session/progress."""

from __future__ import annotations

import uuid

from models.api import CreateSessionRequest, ProgressRequest, ValidateSessionRequest
from utils.error_handling import AppError, to_response
from utils.http import header, parse_body, result_response, source_ip
from utils.logging_config import get_logger

logger = get_logger(__name__)


def _get_engine():
    """Lazy-load the engine so storage clients are built on first request."""
    from services.wiring import get_engine
    return get_engine()


def create_handler(event, context):
    """Start a new conversation for one popup."""
    correlation_id = str(uuid.uuid4())
    try:
        request = parse_body(event, CreateSessionRequest)
    except AppError as exc:
        return to_response(exc, correlation_id)

    result = _get_engine().sessions.create(
        shop_domain=request.shop_domain,
        popup_id=request.popup_id,
        page_url=request.page_url,
        user_agent=request.user_agent or header(event, "user-agent"),
        ip_address=source_ip(event),
    )
    logger.info(
        "session.create handled",
        extra={"correlation_id": correlation_id, "ok": result.ok, "popup_id": request.popup_id},
    )
    return result_response(result, correlation_id)


def validate_handler(event, context):
    """Resume a stored conversation."""
    correlation_id = str(uuid.uuid4())
    try:
        request = parse_body(event, ValidateSessionRequest)
    except AppError as exc:
        return to_response(exc, correlation_id)

    result = _get_engine().sessions.validate(request.session_token, request.shop_domain)
    logger.info("session.validate handled", extra={"correlation_id": correlation_id, "ok": result.ok})
    return result_response(result, correlation_id)


def progress_handler(event, context):
    """Apply one answer, navigate or complete command."""
    correlation_id = str(uuid.uuid4())
    try:
        request = parse_body(event, ProgressRequest)
    except AppError as exc:
        return to_response(exc, correlation_id)

    result = _get_engine().sessions.advance(
        session_token=request.session_token,
        shop_domain=request.shop_domain,
        step_number=request.step_number,
        action=request.action,
        response=request.step_response,
    )
    logger.info(
        "session.progress handled",
        extra={
            "correlation_id": correlation_id,
            "ok": result.ok,
            "action": request.action.value,
            "step_number": request.step_number,
        },
    )
    return result_response(result, correlation_id)
