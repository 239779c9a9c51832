"""Narrow record-store interfaces the engine depends on."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from models.analytics import AnalyticsEvent
from models.email import CollectedEmail
from models.popup import Popup, Shop
from models.session import CustomerSession


class PopupCatalog(ABC):
    """Merchant-owned popup definitions. Read-only to the engine."""

    @abstractmethod
    def get_shop(self, domain: str) -> Optional[Shop]:
        """Look up a shop by its storefront domain."""

    @abstractmethod
    def get_popup(self, shop_id: str, popup_id: str) -> Optional[Popup]:
        """Return a popup of the shop with ordered steps, whatever its status."""

    @abstractmethod
    def list_active_popups(self, shop_id: str) -> List[Popup]:
        """Active, non-deleted popups of the shop, highest priority first."""


class SessionStore(ABC):
    """Keyed store for sessions plus the append-only email and event logs."""

    @abstractmethod
    def create_session(self, session: CustomerSession) -> None:
        """Insert a fresh session; the token must not exist yet."""

    @abstractmethod
    def get_session(self, session_token: str) -> Optional[CustomerSession]:
        """Fetch a session by token, expired or not."""

    @abstractmethod
    def save_session(self, session: CustomerSession, expected_version: int) -> CustomerSession:
        """
        Persist a mutated session if nobody else wrote it since it was read.

        Returns the stored copy with its version bumped. Raises
        ConcurrentModificationError when the stored version differs.
        """

    @abstractmethod
    def find_session_by_discount_code(
        self, shop_id: str, code: str, now: datetime
    ) -> Optional[CustomerSession]:
        """Return an unexpired session of the shop that was issued this code.

        Several sessions can share one code (fixed or tiered discounts), so
        expired holders are skipped rather than ending the search.
        """

    @abstractmethod
    def add_email(self, record: CollectedEmail) -> None:
        """Append an identity record."""

    @abstractmethod
    def list_emails_for_session(self, session_id: str) -> List[CollectedEmail]:
        """Identity records linked to a session."""

    @abstractmethod
    def add_event(self, event: AnalyticsEvent) -> None:
        """Append a widget analytics event."""
