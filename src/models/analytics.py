"""Raw widget analytics events."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class AnalyticsEvent(BaseModel):
    id: str
    shop_id: str
    event_type: str
    session_token: Optional[str] = None
    popup_id: Optional[str] = None
    step_number: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    page_url: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime
