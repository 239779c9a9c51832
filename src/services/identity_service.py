"""
Identity Correlator.

Persists captured emails and links them to the session that produced them.
Submissions are not deduplicated: each call writes a new record.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from models.api import EmailCaptured
from models.email import CollectedEmail
from models.popup import Popup
from models.session import AdvanceAction, CustomerSession
from repositories.base import PopupCatalog, SessionStore
from services.discount_service import DiscountIssuer
from services.session_manager import SessionResolver, apply_transition
from utils.error_handling import (
    ConcurrentModificationError,
    InvalidRequestError,
    NotFoundError,
    guarded,
)
from utils.logging_config import get_logger, short_token
from utils.tokens import utc_now
from utils.validators import normalize_email

logger = get_logger(__name__)


class IdentityCorrelator:
    """Capture an email and correlate it with an in-progress conversation."""

    def __init__(
        self,
        catalog: PopupCatalog,
        store: SessionStore,
        discounts: DiscountIssuer,
        *,
        multi_step_enabled: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.resolver = SessionResolver(catalog, store, clock)
        self.catalog = catalog
        self.store = store
        self.discounts = discounts
        self.multi_step_enabled = multi_step_enabled
        self.clock = clock

    @guarded("collect_email")
    def capture(
        self,
        email: str,
        shop_domain: str,
        session_token: Optional[str] = None,
        quiz_responses: Optional[Dict[str, Any]] = None,
        popup_id: Optional[str] = None,
    ) -> EmailCaptured:
        try:
            address = normalize_email(email)
        except ValueError as exc:
            raise InvalidRequestError(str(exc)) from None
        shop = self.resolver.shop(shop_domain)

        session: Optional[CustomerSession] = None
        popup: Optional[Popup] = None
        discount_code: Optional[str] = None

        if session_token and self.multi_step_enabled:
            try:
                _, session = self.resolver.live_session(session_token, shop_domain)
            except NotFoundError:
                # The address is still worth keeping without the link.
                logger.info(
                    "Email captured without live session",
                    extra={"session_token": short_token(session_token)},
                )
                session = None

        if session is not None:
            popup = self.catalog.get_popup(shop.id, session.popup_id)
            if popup is not None and popup.popup_type.reveals_discount:
                discount_code, session = self.discounts.ensure_code(
                    session, popup, email_provided=True
                )

        if quiz_responses is None and session is not None:
            quiz_responses = session.responses

        record = CollectedEmail(
            id=str(uuid.uuid4()),
            email=address,
            shop_id=shop.id,
            session_id=session.id if session else None,
            popup_id=popup_id or (session.popup_id if session else None),
            quiz_responses=quiz_responses,
            discount_used=discount_code,
            source="popup",
            created_at=self.clock(),
        )
        self.store.add_email(record)
        # Completed only once the email record exists.
        if session is not None:
            session = self._mark_completed(session)

        logger.info(
            "Email captured",
            extra={
                "shop_domain": shop.domain,
                "linked": session is not None,
                "discount_issued": discount_code is not None,
            },
        )
        return EmailCaptured(id=record.id, discount_code=discount_code)

    def _mark_completed(self, session: CustomerSession) -> CustomerSession:
        """Complete the session; re-read once if another writer got there first."""
        for attempt in range(2):
            completed = apply_transition(
                session, AdvanceAction.COMPLETE, session.total_steps, None, self.clock()
            ).model_copy(update={"email_provided": True})
            try:
                return self.store.save_session(completed, expected_version=session.version)
            except ConcurrentModificationError:
                if attempt:
                    raise
                fresh = self.store.get_session(session.session_token)
                if fresh is None:
                    raise NotFoundError("Session not found or expired") from None
                session = fresh
        raise ConcurrentModificationError()
