"""
Popup loader: the page-load entry point of the storefront widget.

Checks the shown flag once, asks the engine which popup applies to the page,
arms its trigger and hands over to the Flow Controller when it fires.
"""

from __future__ import annotations

import json
from typing import Callable, Optional
from urllib.parse import urlparse

from client.api_client import PopupApiClient
from client.flow import FlowController, Renderer
from client.scheduler import Scheduler
from client.storage import SESSION_KEY, SHOWN_KEY, BrowserStorage
from client.trigger import ScrollSource, TriggerEvaluator
from utils.logging_config import get_logger
from utils.validators import page_type_for_path

logger = get_logger(__name__)


class PopupLoader:
    def __init__(
        self,
        api: PopupApiClient,
        renderer: Renderer,
        scheduler: Scheduler,
        session_storage: BrowserStorage,
        local_storage: BrowserStorage,
        page_url: str,
        user_agent: Optional[str] = None,
        scroll_source: Optional[ScrollSource] = None,
        flow_factory: Callable[..., FlowController] = FlowController,
    ):
        self.api = api
        self.renderer = renderer
        self.scheduler = scheduler
        self.session_storage = session_storage
        self.local_storage = local_storage
        self.page_url = page_url
        self.user_agent = user_agent
        self.scroll_source = scroll_source
        self.flow_factory = flow_factory

        self.page_type = page_type_for_path(urlparse(page_url).path)
        self.trigger: Optional[TriggerEvaluator] = None
        self.flow: Optional[FlowController] = None

    def load(self) -> bool:
        """Arm the popup for this page. Returns True when a trigger was armed."""
        if self.session_storage.get(SHOWN_KEY):
            logger.debug("Popup already shown this browsing session")
            return False

        result = self.api.check_popup(self.page_type, self.page_url)
        if not result.ok:
            logger.info("Popup check failed", extra={"kind": str(result.kind)})
            return False
        config = result.data.get("config")
        if not result.data.get("showPopup") or not config:
            logger.debug("No popup for page", extra={"page_type": self.page_type})
            return False

        self.flow = self._make_flow(config)
        self.trigger = TriggerEvaluator(
            config.get("triggerConfig") or {"type": "delay", "value": 2},
            on_show=self._show,
            scheduler=self.scheduler,
            scroll_source=self.scroll_source,
        )
        self.trigger.arm()
        return True

    def resume(self) -> bool:
        """
        Continue a conversation interrupted by a reload.

        The shadow copy only says a conversation existed; its state is taken
        from the server's validate response.
        """
        raw = self.local_storage.get(SESSION_KEY)
        if not raw:
            return False
        try:
            shadow = json.loads(raw)
        except ValueError:
            self.local_storage.remove(SESSION_KEY)
            return False
        token = shadow.get("sessionToken")
        if not token:
            self.local_storage.remove(SESSION_KEY)
            return False

        self.flow = self._make_flow(
            {
                "popupId": shadow.get("popupId"),
                "popupType": shadow.get("popupType"),
                "totalSteps": shadow.get("totalSteps"),
            }
        )
        self.flow.resume(token)
        return True

    def _make_flow(self, config: dict) -> FlowController:
        return self.flow_factory(
            api=self.api,
            renderer=self.renderer,
            scheduler=self.scheduler,
            session_storage=self.session_storage,
            local_storage=self.local_storage,
            popup_config=config,
            page_url=self.page_url,
            user_agent=self.user_agent,
            page_type=self.page_type,
        )

    def _show(self) -> None:
        logger.info("Popup trigger fired", extra={"page_type": self.page_type})
        self.flow.start()
