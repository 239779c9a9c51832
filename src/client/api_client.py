"""
Transport between the storefront flow and the engine API.

Every call returns an ApiResult; nothing raises to the flow controller.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import requests

from utils.error_handling import ErrorKind
from utils.logging_config import get_logger

logger = get_logger(__name__)

KIND_BY_STATUS = {
    400: ErrorKind.INVALID_REQUEST,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.INVALID_STATE,
}


@dataclass
class ApiResult:
    ok: bool
    data: Dict[str, Any] = field(default_factory=dict)
    kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    status: int = 0

    @classmethod
    def from_response(cls, status: int, body: Dict[str, Any]) -> "ApiResult":
        if 200 <= status < 300 and body.get("success", True):
            return cls(ok=True, data=body, status=status)
        try:
            kind = ErrorKind(body.get("code"))
        except ValueError:
            kind = KIND_BY_STATUS.get(status, ErrorKind.INTERNAL)
        return cls(
            ok=False,
            data=body,
            kind=kind,
            message=body.get("error") or body.get("message"),
            status=status,
        )

    @classmethod
    def transport_failure(cls, message: str) -> "ApiResult":
        return cls(ok=False, kind=ErrorKind.INTERNAL, message=message)


class PopupApiClient(ABC):
    """Endpoint methods shared by the HTTP and in-process transports."""

    def __init__(self, shop_domain: str):
        self.shop_domain = shop_domain

    @abstractmethod
    def _send(self, path: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """POST a JSON body and return (status, parsed body)."""

    def _post(self, path: str, body: Dict[str, Any]) -> ApiResult:
        payload = {"shopDomain": self.shop_domain, **body}
        try:
            status, data = self._send(path, payload)
        except requests.exceptions.RequestException as exc:
            logger.warning("API request failed", extra={"path": path, "error": str(exc)})
            return ApiResult.transport_failure(str(exc))
        return ApiResult.from_response(status, data)

    def check_popup(self, page_type: str, page_url: Optional[str] = None) -> ApiResult:
        return self._post("/api/popup-check", {"pageType": page_type, "pageUrl": page_url})

    def create_session(
        self, popup_id: str, page_url: Optional[str] = None, user_agent: Optional[str] = None
    ) -> ApiResult:
        return self._post(
            "/api/session/create",
            {"popupId": popup_id, "pageUrl": page_url, "userAgent": user_agent},
        )

    def validate_session(self, session_token: str) -> ApiResult:
        return self._post("/api/session/validate", {"sessionToken": session_token})

    def progress(
        self, session_token: str, step_number: int, action: str, step_response: Any = None
    ) -> ApiResult:
        body = {"sessionToken": session_token, "stepNumber": step_number, "action": action}
        if step_response is not None:
            body["stepResponse"] = step_response
        return self._post("/api/session/progress", body)

    def generate_discount(self, session_token: str) -> ApiResult:
        return self._post("/api/discount/generate", {"sessionToken": session_token})

    def collect_email(
        self,
        email: str,
        session_token: Optional[str] = None,
        quiz_responses: Optional[Dict[str, Any]] = None,
        popup_id: Optional[str] = None,
    ) -> ApiResult:
        return self._post(
            "/api/collect-email",
            {
                "email": email,
                "sessionToken": session_token,
                "quizResponses": quiz_responses,
                "popupId": popup_id,
            },
        )

    def send_event(self, event_type: str, **fields: Any) -> ApiResult:
        return self._post("/api/analytics/events", {"eventType": event_type, **fields})


class HttpPopupApiClient(PopupApiClient):
    """JSON over HTTPS using requests."""

    def __init__(
        self,
        base_url: str,
        shop_domain: str,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(shop_domain)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    def _send(self, path: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        response = self.http.post(
            f"{self.base_url}{path}",
            json=body,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        return response.status_code, data if isinstance(data, dict) else {}


class LocalPopupApiClient(PopupApiClient):
    """Drives the Lambda router in-process with synthesized HTTP API events."""

    def __init__(self, shop_domain: str, source_ip: str = "127.0.0.1", user_agent: str = "local"):
        super().__init__(shop_domain)
        self.source_ip = source_ip
        self.user_agent = user_agent

    def _send(self, path: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        from handlers.main import lambda_handler

        event = {
            "version": "2.0",
            "rawPath": path,
            "headers": {"content-type": "application/json", "user-agent": self.user_agent},
            "requestContext": {
                "http": {"method": "POST", "path": path, "sourceIp": self.source_ip}
            },
            "body": json.dumps(body),
            "isBase64Encoded": False,
        }
        response = lambda_handler(event, None)
        raw = response.get("body") or "{}"
        return response["statusCode"], json.loads(raw)
