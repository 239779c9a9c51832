"""Browser storage abstraction for the shown flag and the session shadow copy."""

from threading import Lock
from typing import Dict, Optional, Protocol

# Session storage: set once a popup has been shown in this browsing session.
SHOWN_KEY = "papa_popup_shown"
# Local storage: JSON shadow copy of the in-progress conversation.
SESSION_KEY = "papa_popup_session"


class BrowserStorage(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class InMemoryStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})
        self._lock = Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)
