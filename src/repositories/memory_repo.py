"""In-process backends used for local development and tests."""

from datetime import datetime
from threading import Lock
from typing import Dict, Iterable, List, Optional

from models.analytics import AnalyticsEvent
from models.email import CollectedEmail
from models.popup import Popup, Shop
from models.session import CustomerSession
from repositories.base import PopupCatalog, SessionStore
from utils.error_handling import ConcurrentModificationError, InvalidStateError
from utils.tokens import is_expired


class InMemoryPopupCatalog(PopupCatalog):
    """Seedable catalog backed by dicts."""

    def __init__(self, shops: Iterable[Shop] = (), popups: Iterable[Popup] = ()):
        self._shops: Dict[str, Shop] = {}
        self._popups: Dict[str, Popup] = {}
        for shop in shops:
            self.add_shop(shop)
        for popup in popups:
            self.add_popup(popup)

    def add_shop(self, shop: Shop) -> None:
        self._shops[shop.domain.lower()] = shop

    def add_popup(self, popup: Popup) -> None:
        self._popups[popup.id] = popup

    def get_shop(self, domain: str) -> Optional[Shop]:
        return self._shops.get((domain or "").lower())

    def get_popup(self, shop_id: str, popup_id: str) -> Optional[Popup]:
        popup = self._popups.get(popup_id)
        if popup is None or popup.shop_id != shop_id:
            return None
        return popup

    def list_active_popups(self, shop_id: str) -> List[Popup]:
        popups = [p for p in self._popups.values() if p.shop_id == shop_id and p.is_active]
        return sorted(popups, key=lambda p: p.priority, reverse=True)


class InMemorySessionStore(SessionStore):
    """Lock-protected dicts; copies in and out so callers never share state."""

    def __init__(self):
        self._lock = Lock()
        self._sessions: Dict[str, CustomerSession] = {}
        self._emails: List[CollectedEmail] = []
        self._events: List[AnalyticsEvent] = []

    def create_session(self, session: CustomerSession) -> None:
        with self._lock:
            if session.session_token in self._sessions:
                raise InvalidStateError("Session token already exists")
            self._sessions[session.session_token] = session.model_copy(deep=True)

    def get_session(self, session_token: str) -> Optional[CustomerSession]:
        with self._lock:
            stored = self._sessions.get(session_token)
            return stored.model_copy(deep=True) if stored else None

    def save_session(self, session: CustomerSession, expected_version: int) -> CustomerSession:
        with self._lock:
            stored = self._sessions.get(session.session_token)
            if stored is None or stored.version != expected_version:
                raise ConcurrentModificationError()
            saved = session.model_copy(update={"version": expected_version + 1}, deep=True)
            self._sessions[session.session_token] = saved
            return saved.model_copy(deep=True)

    def find_session_by_discount_code(
        self, shop_id: str, code: str, now: datetime
    ) -> Optional[CustomerSession]:
        with self._lock:
            for stored in self._sessions.values():
                if stored.shop_id != shop_id or stored.discount_code != code:
                    continue
                if not is_expired(stored.expires_at, now):
                    return stored.model_copy(deep=True)
        return None

    def add_email(self, record: CollectedEmail) -> None:
        with self._lock:
            self._emails.append(record.model_copy(deep=True))

    def list_emails_for_session(self, session_id: str) -> List[CollectedEmail]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._emails if e.session_id == session_id]

    def add_event(self, event: AnalyticsEvent) -> None:
        with self._lock:
            self._events.append(event.model_copy(deep=True))

    @property
    def emails(self) -> List[CollectedEmail]:
        with self._lock:
            return list(self._emails)

    @property
    def events(self) -> List[AnalyticsEvent]:
        with self._lock:
            return list(self._events)
