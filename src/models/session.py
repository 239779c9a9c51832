"""Customer session: the engine's central mutable record."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator


class AdvanceAction(str, Enum):
    """
    Commands accepted by the advance operation.

    ``answer`` records a response and moves forward, so blindly re-sending it
    after a timeout can double-advance. ``navigate`` and ``complete`` converge
    to the same state however often they are applied.
    """

    ANSWER = "answer"
    NAVIGATE = "navigate"
    COMPLETE = "complete"

    @property
    def is_idempotent(self) -> bool:
        return self is not AdvanceAction.ANSWER


def response_key(step_number: int) -> str:
    return f"step_{step_number}"


class CustomerSession(BaseModel):
    """One visitor's progress through one popup, keyed by session_token."""

    id: str
    session_token: str
    shop_id: str
    popup_id: str
    current_step: int = 1
    total_steps: int = Field(ge=1)
    responses: Dict[str, Any] = Field(default_factory=dict)
    discount_code: Optional[str] = None
    completed_at: Optional[datetime] = None
    email_provided: bool = False
    page_url: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    expires_at: datetime
    version: int = 0

    @model_validator(mode="after")
    def check_step_bounds(self) -> "CustomerSession":
        if not 1 <= self.current_step <= self.total_steps:
            raise ValueError(
                f"current_step {self.current_step} outside 1..{self.total_steps}"
            )
        return self

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def clamp_step(self, step_number: int) -> int:
        return max(1, min(step_number, self.total_steps))
