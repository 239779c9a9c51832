"""
Assemble the engine services from settings.

The only place that reads EngineSettings and picks storage backends; the
services themselves receive plain constructor arguments.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from config.settings import EngineSettings
from models.popup import Popup, Shop
from repositories.base import PopupCatalog, SessionStore
from services.analytics_service import AnalyticsRecorder
from services.discount_service import DiscountIssuer
from services.identity_service import IdentityCorrelator
from services.popup_service import PopupSelector
from services.session_manager import SessionManager
from utils.cache_service import LRUCache
from utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Engine:
    settings: EngineSettings
    catalog: PopupCatalog
    store: SessionStore
    sessions: SessionManager
    discounts: DiscountIssuer
    identities: IdentityCorrelator
    popups: PopupSelector
    analytics: AnalyticsRecorder


def load_seed_catalog(path: str) -> PopupCatalog:
    """Build an in-memory catalog from a ``{"shops": [...], "popups": [...]}`` file."""
    from repositories.memory_repo import InMemoryPopupCatalog

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    return InMemoryPopupCatalog(
        shops=[Shop.model_validate(s) for s in data.get("shops", [])],
        popups=[Popup.model_validate(p) for p in data.get("popups", [])],
    )


def _default_backends(settings: EngineSettings):
    if settings.storage_backend == "aws":
        from repositories.dynamodb_repo import DynamoDbSessionStore
        from repositories.postgres_repo import PostgresPopupCatalog, create_catalog_engine

        catalog = PostgresPopupCatalog(
            create_catalog_engine(settings.database_url, settings.db_secret_arn)
        )
        store = DynamoDbSessionStore(
            settings.sessions_table, settings.emails_table, settings.events_table
        )
        return catalog, store

    from repositories.memory_repo import InMemoryPopupCatalog, InMemorySessionStore

    if settings.catalog_seed_file:
        catalog = load_seed_catalog(settings.catalog_seed_file)
    else:
        catalog = InMemoryPopupCatalog()
    return catalog, InMemorySessionStore()


def build_engine(
    settings: Optional[EngineSettings] = None,
    catalog: Optional[PopupCatalog] = None,
    store: Optional[SessionStore] = None,
) -> Engine:
    """Wire every service against one catalog and one store."""
    settings = settings or EngineSettings.from_environment()
    if catalog is None or store is None:
        default_catalog, default_store = _default_backends(settings)
        catalog = catalog or default_catalog
        store = store or default_store

    enabled = settings.multi_step_enabled
    discounts = DiscountIssuer(catalog, store, multi_step_enabled=enabled)
    engine = Engine(
        settings=settings,
        catalog=catalog,
        store=store,
        sessions=SessionManager(
            catalog,
            store,
            multi_step_enabled=enabled,
            session_ttl_hours=settings.session_ttl_hours,
        ),
        discounts=discounts,
        identities=IdentityCorrelator(catalog, store, discounts, multi_step_enabled=enabled),
        popups=PopupSelector(
            catalog,
            multi_step_enabled=enabled,
            cache=LRUCache(
                max_size=settings.popup_cache_max_size,
                ttl_seconds=settings.popup_cache_ttl_seconds,
            ),
        ),
        analytics=AnalyticsRecorder(catalog, store),
    )
    logger.info(
        "Engine initialized",
        extra={
            "environment": settings.environment,
            "storage_backend": settings.storage_backend,
            "multi_step_enabled": enabled,
        },
    )
    return engine


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Process-wide engine, built on first use and reused by warm invocations."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def set_engine(engine: Optional[Engine]) -> None:
    global _engine
    _engine = engine


def reset_engine() -> None:
    set_engine(None)
