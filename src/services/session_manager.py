"""
Session Manager.

Authoritative state machine for one visitor's progress through a popup.
Every public operation returns an OperationResult; nothing raises past
this module.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, Optional, Tuple

from models.api import PopupView, ProgressResult, SessionCreated, SessionState, StepView
from models.popup import Popup, PopupStep, Shop
from models.session import AdvanceAction, CustomerSession, response_key
from repositories.base import PopupCatalog, SessionStore
from utils.error_handling import (
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    guarded,
)
from utils.logging_config import get_logger, short_token
from utils.tokens import (
    generate_session_token,
    is_expired,
    is_valid_session_token,
    session_expiry,
    utc_now,
)

logger = get_logger(__name__)

SESSION_NOT_FOUND = "Session not found or expired"


def popup_view(popup: Popup) -> PopupView:
    return PopupView.model_validate(popup.to_wire())


def step_view(step: Optional[PopupStep]) -> Optional[StepView]:
    return StepView.model_validate(step.to_wire()) if step else None


def apply_transition(
    session: CustomerSession,
    action: AdvanceAction,
    step_number: int,
    response: Any,
    now: datetime,
) -> CustomerSession:
    """
    Compute the session that results from one advance command.

    Pure: the input session is left untouched. The result always satisfies
    1 <= current_step <= total_steps, and responses only ever grow.
    """
    if step_number < 1:
        raise InvalidRequestError("stepNumber must be >= 1")

    responses = session.responses
    current_step = session.current_step
    completed_at = session.completed_at

    if action is AdvanceAction.ANSWER:
        if response is None or response == "":
            raise InvalidRequestError("stepResponse is required for answer")
        if step_number > session.total_steps:
            raise InvalidRequestError(
                f"stepNumber {step_number} exceeds totalSteps {session.total_steps}"
            )
        responses = {**session.responses, response_key(step_number): response}
        # Answering a step already passed records it without rewinding.
        if step_number >= current_step:
            current_step = min(step_number + 1, session.total_steps)
    elif action is AdvanceAction.NAVIGATE:
        current_step = session.clamp_step(step_number)
    elif action is AdvanceAction.COMPLETE:
        completed_at = completed_at or now
        current_step = session.total_steps

    return session.model_copy(
        update={
            "responses": responses,
            "current_step": current_step,
            "completed_at": completed_at,
            "updated_at": now,
        }
    )


class SessionResolver:
    """Shared lookups: shop by domain, live session by token."""

    def __init__(
        self,
        catalog: PopupCatalog,
        store: SessionStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.catalog = catalog
        self.store = store
        self.clock = clock

    def shop(self, shop_domain: str) -> Shop:
        shop = self.catalog.get_shop(shop_domain)
        if shop is None:
            raise NotFoundError("Shop not found")
        return shop

    def live_session(self, session_token: str, shop_domain: str) -> Tuple[Shop, CustomerSession]:
        """Expired, foreign and malformed tokens are all indistinguishable from missing ones."""
        if not is_valid_session_token(session_token):
            raise NotFoundError(SESSION_NOT_FOUND)
        shop = self.shop(shop_domain)
        session = self.store.get_session(session_token)
        if session is None or session.shop_id != shop.id:
            raise NotFoundError(SESSION_NOT_FOUND)
        if is_expired(session.expires_at, self.clock()):
            raise NotFoundError(SESSION_NOT_FOUND)
        return shop, session

    def popup_for(self, session: CustomerSession) -> Popup:
        popup = self.catalog.get_popup(session.shop_id, session.popup_id)
        if popup is None:
            raise NotFoundError("Popup not found")
        return popup


class SessionManager:
    """Create, validate and advance customer sessions."""

    def __init__(
        self,
        catalog: PopupCatalog,
        store: SessionStore,
        *,
        multi_step_enabled: bool = True,
        session_ttl_hours: int = 24,
        clock: Callable[[], datetime] = utc_now,
        token_factory: Callable[[], str] = generate_session_token,
    ):
        self.resolver = SessionResolver(catalog, store, clock)
        self.catalog = catalog
        self.store = store
        self.multi_step_enabled = multi_step_enabled
        self.session_ttl_hours = session_ttl_hours
        self.clock = clock
        self.token_factory = token_factory

    def _require_enabled(self) -> None:
        if not self.multi_step_enabled:
            raise InvalidStateError("Multi-step popups are disabled")

    @guarded("session.create")
    def create(
        self,
        shop_domain: str,
        popup_id: str,
        page_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> SessionCreated:
        """Mint a fresh session at step 1; every call creates a new one."""
        self._require_enabled()
        shop = self.resolver.shop(shop_domain)
        popup = self.catalog.get_popup(shop.id, popup_id)
        if popup is None or not popup.is_active:
            raise NotFoundError("Popup not found or not active")

        now = self.clock()
        session = CustomerSession(
            id=str(uuid.uuid4()),
            session_token=self.token_factory(),
            shop_id=shop.id,
            popup_id=popup.id,
            current_step=1,
            total_steps=popup.total_steps,
            page_url=page_url or "unknown",
            user_agent=user_agent or "unknown",
            ip_address=ip_address or "unknown",
            created_at=now,
            updated_at=now,
            expires_at=session_expiry(now, self.session_ttl_hours),
        )
        self.store.create_session(session)

        logger.info(
            "Session created",
            extra={
                "session_token": short_token(session.session_token),
                "shop_domain": shop.domain,
                "popup_id": popup.id,
                "total_steps": popup.total_steps,
            },
        )
        return SessionCreated(
            session_token=session.session_token,
            current_step=session.current_step,
            total_steps=session.total_steps,
            popup=popup_view(popup),
        )

    @guarded("session.validate")
    def validate(self, session_token: str, shop_domain: str) -> SessionState:
        """Return the full current state of a live session."""
        self._require_enabled()
        _, session = self.resolver.live_session(session_token, shop_domain)
        popup = self.resolver.popup_for(session)
        if not popup.is_active:
            raise InvalidStateError("Popup is no longer active")

        return SessionState(
            session_token=session.session_token,
            current_step=session.current_step,
            total_steps=session.total_steps,
            responses=session.responses,
            is_completed=session.is_completed,
            popup=popup_view(popup),
        )

    @guarded("session.advance")
    def advance(
        self,
        session_token: str,
        shop_domain: str,
        step_number: int,
        action: AdvanceAction | str,
        response: Any = None,
    ) -> ProgressResult:
        """Apply one answer/navigate/complete command and return the new state."""
        self._require_enabled()
        try:
            command = AdvanceAction(action)
        except ValueError:
            raise InvalidRequestError(f"Unknown action: {action!r}") from None
        if isinstance(step_number, bool) or not isinstance(step_number, int):
            raise InvalidRequestError("stepNumber must be an integer")

        _, session = self.resolver.live_session(session_token, shop_domain)
        popup = self.resolver.popup_for(session)

        updated = apply_transition(session, command, step_number, response, self.clock())
        saved = self.store.save_session(updated, expected_version=session.version)

        logger.info(
            "Session advanced",
            extra={
                "session_token": short_token(saved.session_token),
                "action": command.value,
                "step_number": step_number,
                "current_step": saved.current_step,
                "total_steps": saved.total_steps,
            },
        )
        return ProgressResult(
            session_token=saved.session_token,
            current_step=saved.current_step,
            total_steps=saved.total_steps,
            responses=saved.responses,
            is_completed=saved.is_completed,
            next_step=step_view(popup.step(saved.current_step)),
        )
