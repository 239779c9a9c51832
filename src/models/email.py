"""Captured identity records."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class CollectedEmail(BaseModel):
    """Written once per submission and never mutated."""

    id: str
    email: str
    shop_id: str
    session_id: Optional[str] = None
    popup_id: Optional[str] = None
    quiz_responses: Optional[Dict[str, Any]] = None
    discount_used: Optional[str] = None
    source: str = "popup"
    created_at: datetime
