"""Handlers for POST /api/discount/generate and /api/discount/validate."""

from __future__ import annotations

import uuid

from models.api import DiscountRequest, DiscountValidateRequest
from utils.error_handling import AppError, to_response
from utils.http import parse_body, result_response
from utils.logging_config import get_logger

logger = get_logger(__name__)


def _get_engine():
    """Lazy-load the engine."""
    from services.wiring import get_engine
    return get_engine()


def generate_handler(event, context):
    """Return the session's discount code, minting it once."""
    correlation_id = str(uuid.uuid4())
    try:
        request = parse_body(event, DiscountRequest)
    except AppError as exc:
        return to_response(exc, correlation_id)

    result = _get_engine().discounts.issue(request.session_token, request.shop_domain)
    logger.info("discount.generate handled", extra={"correlation_id": correlation_id, "ok": result.ok})
    return result_response(result, correlation_id)


def validate_handler(event, context):
    """Checkout-side lookup of a previously issued code."""
    correlation_id = str(uuid.uuid4())
    try:
        request = parse_body(event, DiscountValidateRequest)
    except AppError as exc:
        return to_response(exc, correlation_id)

    result = _get_engine().discounts.verify(request.discount_code, request.shop_domain)
    return result_response(result, correlation_id)
