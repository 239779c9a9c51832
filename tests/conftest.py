"""
Pytest configuration to ensure paths are set up correctly for tests.

This allows imports like `from handlers import main` to work when running
tests, simulating the Lambda environment where code is deployed from the
src/ directory. Shared fixtures build an in-memory catalog and store.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import boto3
import pytest


def _ensure_paths_on_sys_path() -> None:
    """Add repository root AND src/ to sys.path if missing.

    The src/ directory is added to simulate Lambda's import behavior,
    where Code.from_asset("src") makes src/ the root of the package.
    """
    repo_root = Path(__file__).resolve().parents[1]
    src_root = repo_root / "src"

    # Add repo root first (for imports like infrastructure.*)
    root_str = str(repo_root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)

    # Add src/ for Lambda-style imports (from handlers import ...)
    src_str = str(src_root)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


_ensure_paths_on_sys_path()

# Ensure boto3 has offline-friendly defaults so tests do not require AWS access.
os.environ.setdefault("AWS_REGION", "eu-west-2")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-2")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("AWS_SESSION_TOKEN", "test")
os.environ.setdefault("ENVIRONMENT", "dev")

# Engine environment used by handlers
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("ENABLE_MULTI_POPUP", "true")

# Create a default boto3 session so resources/clients do not error during import.
boto3.setup_default_session(region_name="eu-west-2")

SHOP_DOMAIN = "papa-store.myshopify.com"
OTHER_SHOP_DOMAIN = "other-store.myshopify.com"
START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


def quiz_discount_popup(popup_id="popup-quiz", shop_id="shop-1", **overrides):
    """Three-step QUESTION, QUESTION, DISCOUNT_REVEAL popup."""
    from models.popup import Popup

    data = {
        "id": popup_id,
        "shop_id": shop_id,
        "name": "Style quiz",
        "status": "ACTIVE",
        "priority": 10,
        "popup_type": "QUIZ_DISCOUNT",
        "total_steps": 3,
        "trigger_config": {"type": "delay", "value": 3},
        "steps": [
            {
                "step_number": 1,
                "step_type": "QUESTION",
                "content": {
                    "question": "What brings you here?",
                    "options": [
                        {"id": "1", "text": "Gifts", "value": "gifts"},
                        {"id": "2", "text": "Myself", "value": "self"},
                    ],
                },
            },
            {
                "step_number": 2,
                "step_type": "QUESTION",
                "content": {
                    "question": "Budget?",
                    "options": [
                        {"id": "1", "text": "Under $50", "value": "low"},
                        {"id": "2", "text": "Over $50", "value": "high"},
                    ],
                },
            },
            {
                "step_number": 3,
                "step_type": "DISCOUNT_REVEAL",
                "content": {"headline": "You unlocked 15% off", "validityText": "Valid today only"},
            },
        ],
    }
    data.update(overrides)
    return Popup.model_validate(data)


def quiz_email_popup(popup_id="popup-email", shop_id="shop-1", **overrides):
    """QUESTION then EMAIL; no discount."""
    from models.popup import Popup

    data = {
        "id": popup_id,
        "shop_id": shop_id,
        "status": "ACTIVE",
        "priority": 5,
        "popup_type": "QUIZ_EMAIL",
        "total_steps": 2,
        "steps": [
            {
                "step_number": 1,
                "step_type": "QUESTION",
                "content": {
                    "question": "Favourite colour?",
                    "options": [{"id": "1", "text": "Red", "value": "red"}],
                },
            },
            {"step_number": 2, "step_type": "EMAIL", "content": {"headline": "Join us"}},
        ],
    }
    data.update(overrides)
    return Popup.model_validate(data)


def simple_email_popup(popup_id="popup-simple", shop_id="shop-1", **overrides):
    from models.popup import Popup

    data = {
        "id": popup_id,
        "shop_id": shop_id,
        "status": "ACTIVE",
        "priority": 1,
        "popup_type": "SIMPLE_EMAIL",
        "total_steps": 1,
        "steps": [{"step_number": 1, "step_type": "EMAIL", "content": {}}],
    }
    data.update(overrides)
    return Popup.model_validate(data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog():
    from models.popup import Shop
    from repositories.memory_repo import InMemoryPopupCatalog

    return InMemoryPopupCatalog(
        shops=[
            Shop(id="shop-1", domain=SHOP_DOMAIN),
            Shop(id="shop-2", domain=OTHER_SHOP_DOMAIN),
        ],
        popups=[
            quiz_discount_popup(),
            quiz_email_popup(),
            simple_email_popup(),
            quiz_discount_popup(popup_id="popup-foreign", shop_id="shop-2"),
        ],
    )


@pytest.fixture
def store():
    from repositories.memory_repo import InMemorySessionStore

    return InMemorySessionStore()


@pytest.fixture
def engine(catalog, store):
    """Engine installed as the process-wide instance used by handlers."""
    from config.settings import EngineSettings
    from services.wiring import build_engine, reset_engine, set_engine

    built = build_engine(EngineSettings(), catalog=catalog, store=store)
    set_engine(built)
    yield built
    reset_engine()


class FakeTimer:
    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manual clock for triggers, close timers and queued analytics sends."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def call_later(self, seconds, callback):
        timer = FakeTimer(self.now + seconds, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float = 0) -> None:
        """Move time forward and run everything due, including timers queued meanwhile."""
        self.now += seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and t.due <= self.now]
            if not due:
                return
            for timer in due:
                self.timers.remove(timer)
                timer.callback()

    @property
    def delays(self):
        return [t.due - self.now for t in self.timers if not t.cancelled]


class RecordingRenderer:
    """Captures every renderer call as (method, args)."""

    def __init__(self):
        self.calls = []
        self.screens = []

    def render_step(self, screen) -> None:
        self.screens.append(screen)
        self.calls.append(("render_step", screen.step_number))

    def show_email_error(self, message) -> None:
        self.calls.append(("show_email_error", message))

    def show_error(self, message) -> None:
        self.calls.append(("show_error", message))

    def show_success(self, message, discount_code) -> None:
        self.calls.append(("show_success", discount_code))

    def offer_restart(self, message) -> None:
        self.calls.append(("offer_restart", message))

    def close(self) -> None:
        self.calls.append(("close",))

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


class FakeScrollSource:
    def __init__(self):
        self.listeners = []

    def add_listener(self, listener) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener) -> None:
        self.listeners.remove(listener)

    def scroll(self, scroll_top, document_height=2000, viewport_height=1000) -> None:
        from client.trigger import ScrollMetrics

        metrics = ScrollMetrics(scroll_top, document_height, viewport_height)
        for listener in list(self.listeners):
            listener(metrics)
