"""Raw widget event recording. Aggregation happens elsewhere."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from models.analytics import AnalyticsEvent
from models.api import EventRecorded
from repositories.base import PopupCatalog, SessionStore
from utils.error_handling import NotFoundError, guarded
from utils.tokens import utc_now


class AnalyticsRecorder:
    def __init__(
        self,
        catalog: PopupCatalog,
        store: SessionStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.catalog = catalog
        self.store = store
        self.clock = clock

    @guarded("analytics.record")
    def record(
        self,
        event_type: str,
        shop_domain: str,
        session_token: Optional[str] = None,
        popup_id: Optional[str] = None,
        step_number: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        page_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> EventRecorded:
        shop = self.catalog.get_shop(shop_domain)
        if shop is None:
            raise NotFoundError("Shop not found")

        event = AnalyticsEvent(
            id=str(uuid.uuid4()),
            shop_id=shop.id,
            event_type=event_type,
            session_token=session_token,
            popup_id=popup_id,
            step_number=step_number,
            metadata=metadata or {},
            page_url=page_url,
            user_agent=user_agent,
            ip_address=ip_address,
            created_at=self.clock(),
        )
        self.store.add_event(event)
        return EventRecorded(event_id=event.id, recorded_at=event.created_at)
