"""Popup authoring models: popups, their steps and the typed step content."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import ConfigDict, Field, field_validator, model_validator

from models.base import CamelModel


class PopupType(str, Enum):
    """Popup kind tag chosen by the merchant."""

    SIMPLE_EMAIL = "SIMPLE_EMAIL"
    QUIZ_EMAIL = "QUIZ_EMAIL"
    QUIZ_DISCOUNT = "QUIZ_DISCOUNT"
    DIRECT_DISCOUNT = "DIRECT_DISCOUNT"

    @property
    def reveals_discount(self) -> bool:
        return self in (PopupType.QUIZ_DISCOUNT, PopupType.DIRECT_DISCOUNT)


class PopupStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    DELETED = "DELETED"


class StepType(str, Enum):
    QUESTION = "QUESTION"
    EMAIL = "EMAIL"
    DISCOUNT_REVEAL = "DISCOUNT_REVEAL"
    CONTENT = "CONTENT"


class DiscountType(str, Enum):
    FIXED = "FIXED"
    LOGIC_BASED = "LOGIC_BASED"
    RANDOMIZED = "RANDOMIZED"


class StepContentBase(CamelModel):
    """Content payloads are opaque to the engine; unknown keys pass through."""

    model_config = ConfigDict(extra="allow")


class QuizOption(CamelModel):
    id: str
    text: str
    value: str


class QuestionContent(StepContentBase):
    question: str = "Question"
    options: List[QuizOption] = Field(default_factory=list)
    allow_multiple: bool = False


class EmailContent(StepContentBase):
    headline: str = "Get 10% Off!"
    description: Optional[str] = None
    placeholder: str = "Enter your email"
    button_text: str = "Subscribe"


class DiscountRevealContent(StepContentBase):
    headline: str = "Here's your discount!"
    description: Optional[str] = None
    code_display: str = "{{DYNAMIC}}"
    validity_text: Optional[str] = None


class FreeContent(StepContentBase):
    headline: str = "Welcome!"
    description: str = ""
    button_text: str = "Continue"


StepContent = Union[QuestionContent, EmailContent, DiscountRevealContent, FreeContent]

CONTENT_MODELS = {
    StepType.QUESTION: QuestionContent,
    StepType.EMAIL: EmailContent,
    StepType.DISCOUNT_REVEAL: DiscountRevealContent,
    StepType.CONTENT: FreeContent,
}


class PopupStep(CamelModel):
    """One screen of a popup; the content shape follows step_type."""

    step_number: int = Field(ge=1)
    step_type: StepType
    content: StepContent

    @model_validator(mode="before")
    @classmethod
    def parse_content_for_type(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        raw_type = data.get("step_type", data.get("stepType"))
        try:
            step_type = StepType(raw_type)
        except ValueError:
            return data
        content = data.get("content") or {}
        model = CONTENT_MODELS[step_type]
        if not isinstance(content, model):
            content = model.model_validate(content)
        return {**data, "content": content}

    def to_wire(self) -> dict:
        return {
            "stepNumber": self.step_number,
            "stepType": self.step_type.value,
            "content": self.content.model_dump(by_alias=True, mode="json", exclude_none=True),
        }


class TriggerConfig(CamelModel):
    """When a dormant popup becomes visible: delay seconds or scroll percent."""

    type: str = "delay"
    value: Union[int, float] = 2

    @model_validator(mode="after")
    def check_range(self) -> "TriggerConfig":
        if self.type == "delay" and not 0 <= self.value <= 300:
            raise ValueError("delay trigger value must be between 0 and 300 seconds")
        if self.type == "scroll" and not 0 <= self.value <= 100:
            raise ValueError("scroll trigger value must be between 0 and 100 percent")
        return self


class TargetingRules(CamelModel):
    pages: List[str] = Field(default_factory=lambda: ["all"])
    specific: List[str] = Field(default_factory=list)

    def matches(self, page_type: str) -> bool:
        return "all" in self.pages or page_type in self.pages


class DiscountTier(CamelModel):
    condition: str
    value: Union[bool, int, str]
    code: str
    discount: Optional[str] = None
    description: Optional[str] = None


class RandomizedOption(CamelModel):
    weight: float = Field(ge=0, le=100)
    code: str
    discount: Optional[str] = None
    description: Optional[str] = None


class DiscountConfig(CamelModel):
    """Union of the FIXED, LOGIC_BASED and RANDOMIZED configurations."""

    code: Optional[str] = None
    amount: Optional[str] = None
    description: Optional[str] = None
    tiers: List[DiscountTier] = Field(default_factory=list)
    fallback: Optional["DiscountConfig"] = None
    options: List[RandomizedOption] = Field(default_factory=list)


class Shop(CamelModel):
    id: str
    domain: str


class Popup(CamelModel):
    """Authoring-time definition; read-only to the engine."""

    id: str
    shop_id: str
    name: str = ""
    status: PopupStatus = PopupStatus.DRAFT
    priority: int = 0
    popup_type: PopupType
    total_steps: int = Field(ge=1)
    steps: List[PopupStep] = Field(default_factory=list)
    trigger_config: TriggerConfig = Field(default_factory=TriggerConfig)
    targeting_rules: TargetingRules = Field(default_factory=TargetingRules)
    discount_type: Optional[DiscountType] = None
    discount_config: Optional[DiscountConfig] = None
    is_deleted: bool = False

    @field_validator("steps")
    @classmethod
    def order_steps(cls, steps: List[PopupStep]) -> List[PopupStep]:
        ordered = sorted(steps, key=lambda s: s.step_number)
        expected = list(range(1, len(ordered) + 1))
        if [s.step_number for s in ordered] != expected:
            raise ValueError("step numbers must be contiguous and start at 1")
        return ordered

    @model_validator(mode="after")
    def check_total_steps(self) -> "Popup":
        if self.steps and self.total_steps != len(self.steps):
            raise ValueError("total_steps must equal the number of steps")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == PopupStatus.ACTIVE and not self.is_deleted

    def step(self, step_number: int) -> Optional[PopupStep]:
        for step in self.steps:
            if step.step_number == step_number:
                return step
        return None

    def first_step_of(self, step_type: StepType) -> Optional[PopupStep]:
        return next((s for s in self.steps if s.step_type == step_type), None)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.popup_type.value,
            "steps": [s.to_wire() for s in self.steps],
        }
