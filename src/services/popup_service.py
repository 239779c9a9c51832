"""Popup selection for a storefront page view."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from models.api import PopupCheckResult
from models.popup import Popup, PopupType
from repositories.base import PopupCatalog
from utils.cache_service import LRUCache
from utils.error_handling import guarded
from utils.logging_config import get_logger

logger = get_logger(__name__)


def popup_config(popup: Popup) -> Dict[str, Any]:
    """Client-facing configuration of a popup that may be shown."""
    return {
        "popupId": popup.id,
        "popupType": popup.popup_type.value,
        "totalSteps": popup.total_steps,
        "steps": [s.to_wire() for s in popup.steps],
        "triggerConfig": popup.trigger_config.to_wire(),
        "discountType": popup.discount_type.value if popup.discount_type else None,
    }


class PopupSelector:
    """Pick the popup to offer on a page, if any."""

    def __init__(
        self,
        catalog: PopupCatalog,
        *,
        multi_step_enabled: bool = True,
        cache: Optional[LRUCache] = None,
    ):
        self.catalog = catalog
        self.multi_step_enabled = multi_step_enabled
        self.cache = cache if cache is not None else LRUCache(max_size=200, ttl_seconds=60)

    def _active_popups(self, shop_id: str) -> List[Popup]:
        cached = self.cache.get(shop_id)
        if cached is not None:
            return cached
        popups = self.catalog.list_active_popups(shop_id)
        self.cache.set(shop_id, popups)
        return popups

    def _offerable(self, popup: Popup) -> bool:
        if self.multi_step_enabled:
            return True
        return popup.popup_type == PopupType.SIMPLE_EMAIL and popup.total_steps == 1

    @guarded("popup.check")
    def check(
        self,
        shop_domain: str,
        page_type: str = "other",
        page_url: Optional[str] = None,
    ) -> PopupCheckResult:
        shop = self.catalog.get_shop(shop_domain)
        if shop is None:
            return PopupCheckResult(show_popup=False, page_type=page_type, reason="Shop not found")

        for popup in self._active_popups(shop.id):
            if not self._offerable(popup):
                continue
            if popup.targeting_rules.matches(page_type):
                logger.info(
                    "Popup selected",
                    extra={"shop_domain": shop.domain, "popup_id": popup.id, "page_type": page_type},
                )
                return PopupCheckResult(
                    show_popup=True, page_type=page_type, config=popup_config(popup)
                )

        return PopupCheckResult(
            show_popup=False, page_type=page_type, reason="No popup configured for this page"
        )
