"""
Flow Controller.

Client-side state machine for one visible popup. It renders whatever step
the server says is current and turns visitor actions into engine calls.

States::

    UNINITIALIZED -> AWAITING_SESSION -> RENDERING -> CLOSED

The local shadow copy in browser storage exists only so a reload can tell
that a conversation was in progress; every render comes from the latest
server response.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Protocol

from client.api_client import ApiResult, PopupApiClient
from client.scheduler import Scheduler, TimerHandle
from client.storage import SESSION_KEY, SHOWN_KEY, BrowserStorage
from utils.error_handling import ErrorKind
from utils.logging_config import get_logger

logger = get_logger(__name__)

SUCCESS_CLOSE_SECONDS = 3
GENERIC_ERROR = "Sorry, there was an error. Please try again."
EMAIL_ERROR = "Please enter a valid email address and try again."
SUCCESS_MESSAGE = "Thank you! Check your email for your discount."
SESSION_LOST = "This offer is no longer available. Start again?"


class FlowState(str, Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_SESSION = "awaiting_session"
    RENDERING = "rendering"
    CLOSED = "closed"


class CloseReason(str, Enum):
    OVERLAY_CLICK = "overlay_click"
    CLOSE_BUTTON = "close_button"
    ESCAPE_KEY = "escape_key"
    COMPLETED = "completed"


@dataclass
class StepScreen:
    """What the renderer needs to draw one step."""

    step_number: int
    step_type: str
    content: Dict[str, Any]
    total_steps: int
    selected_option: Optional[Dict[str, Any]] = None

    @property
    def can_go_back(self) -> bool:
        return self.step_number > 1 and self.step_type != "DISCOUNT_REVEAL"

    @property
    def can_advance(self) -> bool:
        if self.step_type == "QUESTION":
            return self.selected_option is not None
        return self.step_type in ("CONTENT", "EMAIL")


class Renderer(Protocol):
    def render_step(self, screen: StepScreen) -> None:
        ...

    def show_email_error(self, message: str) -> None:
        ...

    def show_error(self, message: str) -> None:
        ...

    def show_success(self, message: str, discount_code: Optional[str]) -> None:
        ...

    def offer_restart(self, message: str) -> None:
        ...

    def close(self) -> None:
        ...


@dataclass
class Conversation:
    """Last server-confirmed view of the session."""

    session_token: Optional[str]
    popup_id: str
    popup_type: str
    current_step: int
    total_steps: int
    steps: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    responses: Dict[str, Any] = field(default_factory=dict)
    is_completed: bool = False
    discount_code: Optional[str] = None

    def shadow(self) -> Dict[str, Any]:
        return {
            "sessionToken": self.session_token,
            "popupId": self.popup_id,
            "popupType": self.popup_type,
            "currentStep": self.current_step,
            "totalSteps": self.total_steps,
            "responses": self.responses,
        }


def _steps_by_number(steps: List[Dict[str, Any]]) -> Dict[int, Dict[str, Any]]:
    return {int(s["stepNumber"]): s for s in steps or []}


class FlowController:
    """Drive one popup from session creation to close."""

    def __init__(
        self,
        api: PopupApiClient,
        renderer: Renderer,
        scheduler: Scheduler,
        session_storage: BrowserStorage,
        local_storage: BrowserStorage,
        popup_config: Dict[str, Any],
        page_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        page_type: str = "other",
    ):
        self.api = api
        self.renderer = renderer
        self.scheduler = scheduler
        self.session_storage = session_storage
        self.local_storage = local_storage
        self.popup_config = popup_config
        self.page_url = page_url
        self.user_agent = user_agent
        self.page_type = page_type

        self.state = FlowState.UNINITIALIZED
        self.conversation: Optional[Conversation] = None
        self.screen: Optional[StepScreen] = None
        self._impression_sent = False
        self._completion_sent = False
        self._close_timer: Optional[TimerHandle] = None
        self._busy = Lock()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create a fresh session and render its first step."""
        with self._exclusive() as acquired:
            if not acquired:
                return
            self.state = FlowState.AWAITING_SESSION
            result = self.api.create_session(
                self.popup_config["popupId"], self.page_url, self.user_agent
            )
            if result.ok:
                self._adopt(result.data, steps=result.data["popup"]["steps"])
                self._render_current()
            elif result.kind == ErrorKind.INVALID_STATE and self._single_step():
                self._start_without_session()
            else:
                self._fail(result)

    def resume(self, session_token: str) -> None:
        """Pick up a stored conversation after a reload."""
        with self._exclusive() as acquired:
            if not acquired:
                return
            self.state = FlowState.AWAITING_SESSION
            result = self._idempotent(lambda: self.api.validate_session(session_token))
            if not result.ok:
                self._fail(result)
                return
            self._adopt(result.data, steps=result.data["popup"]["steps"])
            self._render_current()

    def restart(self) -> None:
        """Start over after the server forgot the conversation."""
        self._clear_shadow()
        self.conversation = None
        self.screen = None
        self.state = FlowState.UNINITIALIZED
        self.start()

    # ------------------------------------------------------------------
    # Visitor actions
    # ------------------------------------------------------------------

    def select_option(self, value: str) -> None:
        """Mark the QUESTION option with this value as chosen; does not advance."""
        if not self._rendering("QUESTION"):
            return
        options = self.screen.content.get("options") or []
        index = next(
            (i for i, o in enumerate(options) if o.get("value") == value), None
        )
        if index is None:
            raise ValueError(f"Unknown option: {value!r}")
        chosen = options[index]
        self.screen.selected_option = {
            "value": chosen.get("value"),
            "text": chosen.get("text"),
            "index": index,
        }
        self._track(
            "option_selected",
            step_number=self.screen.step_number,
            metadata={
                "optionValue": chosen.get("value"),
                "optionText": chosen.get("text"),
                "optionIndex": index,
            },
        )

    def next(self) -> bool:
        """Submit the selected QUESTION option. Returns False if nothing was sent."""
        if not self._rendering("QUESTION") or self.screen.selected_option is None:
            return False
        with self._exclusive() as acquired:
            if not acquired:
                return False
            step_number = self.screen.step_number
            answer = dict(self.screen.selected_option)
            self._track("step_complete", step_number=step_number, metadata={"response": answer})
            # answer is not retried automatically; the visitor retries by pressing Next again.
            result = self.api.progress(
                self.conversation.session_token, step_number, "answer", answer
            )
            if not result.ok:
                self._fail(result)
                return False
            self._adopt(result.data)
            if step_number >= self.conversation.total_steps:
                self._finish()
            else:
                self._render_current(result.data.get("nextStep"))
            return True

    def proceed(self) -> bool:
        """Continue past a CONTENT step."""
        if not self._rendering("CONTENT"):
            return False
        with self._exclusive() as acquired:
            if not acquired:
                return False
            conversation = self.conversation
            if conversation.current_step >= conversation.total_steps:
                self._finish()
                return True
            return self._navigate(conversation.current_step + 1)

    def back(self) -> bool:
        if self.screen is None or not self.screen.can_go_back or self.state != FlowState.RENDERING:
            return False
        with self._exclusive() as acquired:
            if not acquired:
                return False
            from_step = self.conversation.current_step
            self._track("step_back", step_number=from_step, metadata={"toStep": from_step - 1})
            return self._navigate(from_step - 1)

    def submit_email(self, email: str) -> bool:
        """Capture the email first, then move on; the field stays editable on failure."""
        if not self._rendering("EMAIL"):
            return False
        email = (email or "").strip()
        if not email:
            self.renderer.show_email_error(EMAIL_ERROR)
            return False
        with self._exclusive() as acquired:
            if not acquired:
                return False
            conversation = self.conversation
            step_number = self.screen.step_number
            self._track("email_attempt", step_number=step_number)
            result = self.api.collect_email(
                email,
                session_token=conversation.session_token,
                quiz_responses=conversation.responses,
                popup_id=conversation.popup_id,
            )
            if not result.ok:
                self._track(
                    "email_failed", step_number=step_number, metadata={"error": result.message}
                )
                message = EMAIL_ERROR if result.kind == ErrorKind.INVALID_REQUEST else GENERIC_ERROR
                self.renderer.show_email_error(message)
                return False

            self._track("email_provided", step_number=step_number)
            conversation.discount_code = result.data.get("discountCode") or conversation.discount_code
            conversation.is_completed = conversation.session_token is not None

            if conversation.session_token and step_number < conversation.total_steps:
                return self._navigate(step_number + 1)
            self._finish()
            return True

    def close(self, reason: CloseReason = CloseReason.CLOSE_BUTTON) -> None:
        """Dismiss the popup and remember it was shown this browsing session."""
        if self.state == FlowState.CLOSED:
            return
        if self._close_timer is not None:
            self._close_timer.cancel()
            self._close_timer = None

        conversation = self.conversation
        if conversation is not None:
            self._track(
                "close",
                step_number=conversation.current_step,
                metadata={
                    "reason": CloseReason(reason).value,
                    "totalSteps": conversation.total_steps,
                    "completionRate": round(
                        conversation.current_step / conversation.total_steps * 100
                    ),
                },
            )
            if not conversation.is_completed and conversation.current_step < conversation.total_steps:
                self._track(
                    "dropoff",
                    step_number=conversation.current_step,
                    metadata={
                        "dropoffStage": f"step_{conversation.current_step}",
                        "reason": CloseReason(reason).value,
                        "completedSteps": conversation.current_step - 1,
                        "remainingSteps": conversation.total_steps - conversation.current_step,
                    },
                )

        self.state = FlowState.CLOSED
        self.session_storage.set(SHOWN_KEY, "true")
        self._clear_shadow()
        self.renderer.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _exclusive(self):
        return _TryLock(self._busy)

    def _rendering(self, step_type: str) -> bool:
        return (
            self.state == FlowState.RENDERING
            and self.screen is not None
            and self.screen.step_type == step_type
        )

    def _single_step(self) -> bool:
        return int(self.popup_config.get("totalSteps") or 0) == 1 and bool(
            self.popup_config.get("steps")
        )

    def _start_without_session(self) -> None:
        """Single-step popups still work when the server has multi-step sessions disabled."""
        logger.info(
            "Rendering popup without session",
            extra={"popup_id": self.popup_config.get("popupId")},
        )
        self.conversation = Conversation(
            session_token=None,
            popup_id=self.popup_config["popupId"],
            popup_type=self.popup_config.get("popupType", ""),
            current_step=1,
            total_steps=1,
            steps=_steps_by_number(self.popup_config.get("steps")),
        )
        self._render_current()

    def _adopt(self, data: Dict[str, Any], steps: Optional[List[Dict[str, Any]]] = None) -> None:
        """Take the server's view as the new truth and refresh the shadow copy."""
        conversation = self.conversation
        if steps is not None or conversation is None:
            popup = data.get("popup") or {}
            conversation = Conversation(
                session_token=data["sessionToken"],
                popup_id=popup.get("id", self.popup_config.get("popupId")),
                popup_type=popup.get("type", self.popup_config.get("popupType", "")),
                current_step=data["currentStep"],
                total_steps=data["totalSteps"],
                steps=_steps_by_number(steps or popup.get("steps")),
                discount_code=conversation.discount_code if conversation else None,
            )
        conversation.current_step = data["currentStep"]
        conversation.total_steps = data["totalSteps"]
        conversation.responses = data.get("responses") or conversation.responses
        conversation.is_completed = bool(data.get("isCompleted", conversation.is_completed))
        self.conversation = conversation
        if conversation.session_token:
            self.local_storage.set(SESSION_KEY, json.dumps(conversation.shadow()))

    def _navigate(self, step_number: int) -> bool:
        conversation = self.conversation
        result = self._idempotent(
            lambda: self.api.progress(conversation.session_token, step_number, "navigate")
        )
        if not result.ok:
            self._fail(result)
            return False
        self._adopt(result.data)
        self._render_current(result.data.get("nextStep"))
        return True

    def _render_current(self, step: Optional[Dict[str, Any]] = None) -> None:
        conversation = self.conversation
        step = step or conversation.steps.get(conversation.current_step)
        if step is None:
            logger.warning(
                "No content for current step",
                extra={"popup_id": conversation.popup_id, "current_step": conversation.current_step},
            )
            self.renderer.show_error(GENERIC_ERROR)
            return

        content = dict(step.get("content") or {})
        if step["stepType"] == "DISCOUNT_REVEAL":
            code = self._reveal_code()
            if code:
                content["codeDisplay"] = code

        self.screen = StepScreen(
            step_number=int(step["stepNumber"]),
            step_type=step["stepType"],
            content=content,
            total_steps=conversation.total_steps,
        )
        self.state = FlowState.RENDERING
        self.renderer.render_step(self.screen)

        if not self._impression_sent:
            self._impression_sent = True
            self._track(
                "impression",
                step_number=self.screen.step_number,
                metadata={
                    "popupType": conversation.popup_type,
                    "totalSteps": conversation.total_steps,
                    "pageType": self.page_type,
                },
            )
        self._track(
            "step_view", step_number=self.screen.step_number, metadata={"stepType": step["stepType"]}
        )

    def _reveal_code(self) -> Optional[str]:
        """Complete the session if needed, then fetch its one discount code."""
        conversation = self.conversation
        if conversation.session_token is None:
            return conversation.discount_code

        if not conversation.is_completed:
            result = self._idempotent(
                lambda: self.api.progress(
                    conversation.session_token, conversation.total_steps, "complete"
                )
            )
            if result.ok:
                self._adopt(result.data)
            else:
                logger.warning("Could not complete session", extra={"kind": str(result.kind)})
        self._mark_complete()

        result = self._idempotent(lambda: self.api.generate_discount(conversation.session_token))
        if result.ok:
            conversation.discount_code = result.data.get("discountCode")
        else:
            logger.warning("Discount not issued", extra={"kind": str(result.kind)})
        return conversation.discount_code

    def _finish(self) -> None:
        """Show the success message, then close after a short grace period."""
        conversation = self.conversation
        if conversation.session_token and not conversation.is_completed:
            result = self._idempotent(
                lambda: self.api.progress(
                    conversation.session_token, conversation.total_steps, "complete"
                )
            )
            if result.ok:
                self._adopt(result.data)
        self._mark_complete()
        self.renderer.show_success(SUCCESS_MESSAGE, self.conversation.discount_code)
        self._close_timer = self.scheduler.call_later(
            SUCCESS_CLOSE_SECONDS, lambda: self.close(CloseReason.COMPLETED)
        )

    def _mark_complete(self) -> None:
        if self._completion_sent:
            return
        self._completion_sent = True
        conversation = self.conversation
        self._track(
            "complete",
            step_number=conversation.current_step,
            metadata={"popupType": conversation.popup_type, "totalSteps": conversation.total_steps},
        )

    def _idempotent(self, call: Callable[[], ApiResult]) -> ApiResult:
        """Run a safe-to-repeat call, retrying once on an internal failure."""
        result = call()
        if not result.ok and result.kind == ErrorKind.INTERNAL:
            logger.info("Retrying idempotent call", extra={"error": result.message})
            result = call()
        return result

    def _fail(self, result: ApiResult) -> None:
        if result.kind == ErrorKind.NOT_FOUND:
            # The server no longer knows this conversation.
            self.state = FlowState.UNINITIALIZED
            self.conversation = None
            self.screen = None
            self._clear_shadow()
            self.renderer.offer_restart(SESSION_LOST)
            return
        if self.state == FlowState.AWAITING_SESSION:
            self.state = FlowState.UNINITIALIZED
        logger.warning(
            "Popup call failed", extra={"kind": str(result.kind), "error": result.message}
        )
        self.renderer.show_error(GENERIC_ERROR)

    def _clear_shadow(self) -> None:
        self.local_storage.remove(SESSION_KEY)

    def _track(self, event_type: str, step_number: Optional[int] = None, **fields: Any) -> None:
        """Queue an analytics event; delivery failures never reach the visitor."""
        conversation = self.conversation
        payload = {
            "popupId": conversation.popup_id if conversation else self.popup_config.get("popupId"),
            "sessionToken": conversation.session_token if conversation else None,
            "stepNumber": step_number,
            "pageUrl": self.page_url,
            "userAgent": self.user_agent,
            **fields,
        }

        def send() -> None:
            try:
                result = self.api.send_event(event_type, **payload)
            except Exception:
                logger.debug("Analytics event dropped", extra={"event_type": event_type}, exc_info=True)
                return
            if not result.ok:
                logger.debug("Analytics event rejected", extra={"event_type": event_type})

        self.scheduler.call_later(0, send)


class _TryLock:
    """Context manager that yields whether the lock was free."""

    def __init__(self, lock: Lock):
        self.lock = lock
        self.acquired = False

    def __enter__(self) -> bool:
        self.acquired = self.lock.acquire(blocking=False)
        return self.acquired

    def __exit__(self, *exc_info) -> None:
        if self.acquired:
            self.lock.release()
