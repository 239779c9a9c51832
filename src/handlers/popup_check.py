"""Handler for POST /api/popup-check."""

import uuid

from models.api import PopupCheckRequest
from utils.error_handling import AppError, to_response
from utils.http import parse_body, result_response


def _get_engine():
    from services.wiring import get_engine
    return get_engine()


def lambda_handler(event, context):
    """Tell the storefront whether to arm a popup on this page."""
    correlation_id = str(uuid.uuid4())
    try:
        request = parse_body(event, PopupCheckRequest)
    except AppError as exc:
        return to_response(exc, correlation_id)

    result = _get_engine().popups.check(request.shop_domain, request.page_type, request.page_url)
    return result_response(result, correlation_id)
