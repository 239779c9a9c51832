"""
Discount Issuer.

Mints at most one discount code per session, for popup kinds that reveal
one, and answers code lookups from checkout-side callers.
"""

from __future__ import annotations

import random
import secrets
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from models.api import DiscountInfo, DiscountIssued, DiscountVerification
from models.popup import DiscountConfig, DiscountRevealContent, DiscountType, Popup, StepType
from models.session import CustomerSession
from repositories.base import PopupCatalog, SessionStore
from services.session_manager import SessionResolver
from utils.error_handling import (
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    guarded,
)
from utils.logging_config import get_logger, short_token
from utils.tokens import utc_now

logger = get_logger(__name__)

DEFAULT_HEADLINE = "Here's your discount!"
DEFAULT_DESCRIPTION = "Thanks for completing the quiz"
DEFAULT_VALIDITY = "Valid for 24 hours"


def generate_discount_code(responses: Dict[str, Any]) -> str:
    """Short opaque code; visitors who answered more than two steps get the VIP prefix."""
    suffix = "VIP" if len(responses or {}) > 2 else "SAVE"
    return f"QUIZ{suffix}{secrets.token_hex(3).upper()}"


def _answer_values(responses: Dict[str, Any]) -> set:
    values = set()
    for answer in (responses or {}).values():
        if isinstance(answer, dict):
            answer = answer.get("value", answer.get("text"))
        if answer is not None:
            values.add(str(answer))
    return values


class DiscountIssuer:
    """Issue and verify per-session discount codes."""

    def __init__(
        self,
        catalog: PopupCatalog,
        store: SessionStore,
        *,
        multi_step_enabled: bool = True,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
        code_factory: Callable[[Dict[str, Any]], str] = generate_discount_code,
    ):
        self.resolver = SessionResolver(catalog, store, clock)
        self.catalog = catalog
        self.store = store
        self.multi_step_enabled = multi_step_enabled
        self.clock = clock
        self.rng = rng or random.Random()
        self.code_factory = code_factory

    @guarded("discount.generate")
    def issue(self, session_token: str, shop_domain: str) -> DiscountIssued:
        """Return the session's code, minting it on first call."""
        if not self.multi_step_enabled:
            raise InvalidStateError("Multi-step popups are disabled")
        _, session = self.resolver.live_session(session_token, shop_domain)
        popup = self.resolver.popup_for(session)
        code, _ = self.ensure_code(session, popup)
        return DiscountIssued(discount_code=code, discount_info=self.describe(popup, code))

    @guarded("discount.validate")
    def verify(self, discount_code: str, shop_domain: str) -> DiscountVerification:
        """Look up the live session that carries a code."""
        if not self.multi_step_enabled:
            raise InvalidStateError("Multi-step popups are disabled")
        shop = self.resolver.shop(shop_domain)
        session = self.store.find_session_by_discount_code(shop.id, discount_code, self.clock())
        if session is None:
            raise NotFoundError("Discount code not found or expired")

        popup = self.catalog.get_popup(shop.id, session.popup_id)
        email_collected = session.email_provided or bool(
            self.store.list_emails_for_session(session.id)
        )
        valid = not email_collected or session.is_completed

        logger.info(
            "Discount code checked",
            extra={"shop_domain": shop.domain, "valid": valid},
        )
        return DiscountVerification(
            valid=valid,
            discount_code=discount_code,
            session_info={
                "sessionToken": session.session_token,
                "popupType": popup.popup_type.value if popup else None,
                "completedAt": session.completed_at.isoformat() if session.completed_at else None,
                "emailCollected": email_collected,
            },
        )

    def ensure_code(
        self, session: CustomerSession, popup: Popup, *, email_provided: bool = False
    ) -> Tuple[str, CustomerSession]:
        """
        Return (code, session) after making sure the session carries a code.

        Raises InvalidStateError for popup kinds without a discount. A
        concurrent writer that already stored a code wins; its code is reused.
        ``email_provided`` lets tier conditions see an email that is being
        captured but not yet recorded on the session.
        """
        if not popup.popup_type.reveals_discount:
            raise InvalidStateError("Popup does not support discount generation")

        for _ in range(2):
            if session.discount_code:
                return session.discount_code, session
            view = session
            if email_provided:
                view = session.model_copy(update={"email_provided": True})
            code = self._choose_code(view, popup)
            updated = session.model_copy(
                update={"discount_code": code, "updated_at": self.clock()}
            )
            try:
                saved = self.store.save_session(updated, expected_version=session.version)
            except ConcurrentModificationError:
                fresh = self.store.get_session(session.session_token)
                if fresh is None:
                    raise NotFoundError("Session not found or expired") from None
                session = fresh
                continue
            logger.info(
                "Discount code issued",
                extra={"session_token": short_token(saved.session_token), "popup_id": popup.id},
            )
            return code, saved

        if session.discount_code:
            return session.discount_code, session
        raise ConcurrentModificationError()

    def describe(self, popup: Popup, code: str) -> DiscountInfo:
        step = popup.first_step_of(StepType.DISCOUNT_REVEAL)
        content = step.content if step else DiscountRevealContent()
        return DiscountInfo(
            headline=content.headline or DEFAULT_HEADLINE,
            description=content.description or DEFAULT_DESCRIPTION,
            validity_text=content.validity_text or DEFAULT_VALIDITY,
            code_display=code,
        )

    def _choose_code(self, session: CustomerSession, popup: Popup) -> str:
        config = popup.discount_config
        if config is not None:
            if popup.discount_type == DiscountType.FIXED and config.code:
                return config.code
            if popup.discount_type == DiscountType.RANDOMIZED and config.options:
                weights = [option.weight for option in config.options]
                if sum(weights) > 0:
                    return self.rng.choices(config.options, weights=weights, k=1)[0].code
            if popup.discount_type == DiscountType.LOGIC_BASED:
                code = self._tier_code(session, config)
                if code:
                    return code
        return self.code_factory(session.responses)

    @staticmethod
    def _tier_code(session: CustomerSession, config: DiscountConfig) -> Optional[str]:
        answers = _answer_values(session.responses)
        for tier in config.tiers:
            if tier.condition == "steps_completed":
                if len(session.responses) >= int(tier.value):
                    return tier.code
            elif tier.condition == "email_provided":
                if session.email_provided == bool(tier.value):
                    return tier.code
            elif tier.condition == "specific_answer":
                if str(tier.value) in answers:
                    return tier.code
        if config.fallback and config.fallback.code:
            return config.fallback.code
        return None
