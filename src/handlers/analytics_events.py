"""Handler for POST /api/analytics/events."""

import uuid

from models.api import AnalyticsEventRequest
from utils.error_handling import AppError, to_response
from utils.http import header, parse_body, result_response, source_ip


def _get_engine():
    from services.wiring import get_engine
    return get_engine()


def lambda_handler(event, context):
    """Append one raw widget event."""
    correlation_id = str(uuid.uuid4())
    try:
        request = parse_body(event, AnalyticsEventRequest)
    except AppError as exc:
        return to_response(exc, correlation_id)

    result = _get_engine().analytics.record(
        event_type=request.event_type,
        shop_domain=request.shop_domain,
        session_token=request.session_token,
        popup_id=request.popup_id,
        step_number=request.step_number,
        metadata=request.metadata,
        page_url=request.page_url,
        user_agent=request.user_agent or header(event, "user-agent"),
        ip_address=source_ip(event),
    )
    return result_response(result, correlation_id)
