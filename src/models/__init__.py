"""Pydantic models for domain records and API payloads."""

from models.analytics import AnalyticsEvent  # noqa: F401
from models.api import (  # noqa: F401
    AnalyticsEventRequest,
    CollectEmailRequest,
    CreateSessionRequest,
    DiscountInfo,
    DiscountIssued,
    DiscountRequest,
    DiscountValidateRequest,
    DiscountVerification,
    EmailCaptured,
    EventRecorded,
    PopupCheckRequest,
    PopupCheckResult,
    PopupView,
    ProgressRequest,
    ProgressResult,
    SessionCreated,
    SessionState,
    StepView,
    ValidateSessionRequest,
)
from models.email import CollectedEmail  # noqa: F401
from models.popup import (  # noqa: F401
    DiscountConfig,
    DiscountType,
    Popup,
    PopupStatus,
    PopupStep,
    PopupType,
    Shop,
    StepType,
    TriggerConfig,
)
from models.session import AdvanceAction, CustomerSession  # noqa: F401
