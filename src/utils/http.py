"""Request parsing and response shaping for API Gateway HTTP API events."""

import base64
import json
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from utils.error_handling import (
    InvalidRequestError,
    OperationResult,
    json_response,
    to_response,
)

M = TypeVar("M", bound=BaseModel)


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    if first.get("type") == "missing":
        return f"{field} is required"
    message = first.get("msg", "is invalid")
    return f"{field}: {message.removeprefix('Value error, ')}"


def parse_body(event: Dict[str, Any], model: Type[M]) -> M:
    """Decode the JSON body into ``model`` or raise InvalidRequestError."""
    raw = event.get("body") or ""
    if event.get("isBase64Encoded") and raw:
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        payload = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        raise InvalidRequestError("Request body must be valid JSON") from None
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidRequestError(_describe(exc)) from None


def source_ip(event: Dict[str, Any]) -> Optional[str]:
    ip = event.get("requestContext", {}).get("http", {}).get("sourceIp")
    if ip:
        return ip
    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    forwarded = headers.get("x-forwarded-for")
    return forwarded.split(",")[0].strip() if forwarded else None


def header(event: Dict[str, Any], name: str) -> Optional[str]:
    headers = event.get("headers") or {}
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def result_response(result: OperationResult, correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """200 with ``success: true`` merged into the payload, or the mapped error."""
    if not result.ok:
        return to_response(result.error, correlation_id)
    return json_response(200, {"success": True, **result.value.to_wire()})
