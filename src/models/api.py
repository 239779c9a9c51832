"""Request and response payloads for the storefront-facing endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from models.base import CamelModel
from models.session import AdvanceAction


class _ShopScoped(CamelModel):
    shop_domain: str

    @field_validator("shop_domain")
    @classmethod
    def require_shop(cls, value: str) -> str:
        cleaned = (value or "").strip().lower()
        if not cleaned:
            raise ValueError("shopDomain is required")
        return cleaned


class _SessionScoped(_ShopScoped):
    session_token: str

    @field_validator("session_token")
    @classmethod
    def require_token(cls, value: str) -> str:
        if not (value or "").strip():
            raise ValueError("sessionToken is required")
        return value.strip()


class CreateSessionRequest(_ShopScoped):
    popup_id: str = Field(min_length=1)
    page_url: Optional[str] = None
    user_agent: Optional[str] = None


class ValidateSessionRequest(_SessionScoped):
    pass


class ProgressRequest(_SessionScoped):
    step_number: int = Field(ge=1)
    step_response: Any = None
    action: AdvanceAction


class DiscountRequest(_SessionScoped):
    pass


class DiscountValidateRequest(_ShopScoped):
    discount_code: str = Field(min_length=1)


class CollectEmailRequest(_ShopScoped):
    email: str
    session_token: Optional[str] = None
    quiz_responses: Optional[Dict[str, Any]] = None
    popup_id: Optional[str] = None


class PopupCheckRequest(_ShopScoped):
    page_type: str = "other"
    page_url: Optional[str] = None


class AnalyticsEventRequest(_ShopScoped):
    event_type: str = Field(min_length=1)
    session_token: Optional[str] = None
    popup_id: Optional[str] = None
    step_number: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    page_url: Optional[str] = None
    user_agent: Optional[str] = None


class StepView(CamelModel):
    step_number: int
    step_type: str
    content: Dict[str, Any] = Field(default_factory=dict)


class PopupView(CamelModel):
    id: str
    type: str
    steps: List[StepView] = Field(default_factory=list)


class SessionCreated(CamelModel):
    session_token: str
    current_step: int
    total_steps: int
    popup: PopupView


class SessionState(CamelModel):
    session_token: str
    current_step: int
    total_steps: int
    responses: Dict[str, Any]
    is_completed: bool
    popup: PopupView


class ProgressResult(CamelModel):
    session_token: str
    current_step: int
    total_steps: int
    responses: Dict[str, Any]
    is_completed: bool
    next_step: Optional[StepView] = None


class DiscountInfo(CamelModel):
    headline: str
    description: str
    validity_text: str
    code_display: str


class DiscountIssued(CamelModel):
    discount_code: str
    discount_info: DiscountInfo


class DiscountVerification(CamelModel):
    valid: bool
    discount_code: str
    session_info: Dict[str, Any]


class EmailCaptured(CamelModel):
    id: str
    discount_code: Optional[str] = None


class PopupCheckResult(CamelModel):
    show_popup: bool
    page_type: str
    config: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None


class EventRecorded(CamelModel):
    event_id: str
    recorded_at: datetime
