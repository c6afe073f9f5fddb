from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


MEAL_SLOTS: Tuple[str, ...] = ("breakfast", "lunch", "dinner")
PLAN_DAY_COUNT = 3


class Stage(str, Enum):
    UPLOAD = "upload"
    REVIEW = "review"
    PLAN = "plan"


class ProviderId(str, Enum):
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    OPENAI = "openai"

    @classmethod
    def parse(cls, value: Any) -> "ProviderId":
        """Map a stored/CLI value to a provider; unknown values fall back to Gemini."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            candidate = value.strip().lower()
            for member in cls:
                if member.value == candidate:
                    return member
        return cls.GEMINI


@dataclass(frozen=True)
class ProviderConfig:
    provider_id: ProviderId = ProviderId.GEMINI
    api_key: Optional[str] = None

    @property
    def requires_key(self) -> bool:
        return self.provider_id is not ProviderId.GEMINI

    @property
    def has_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def masked(self) -> Dict[str, Any]:
        key = (self.api_key or "").strip()
        hint = f"...{key[-4:]}" if len(key) > 8 else ("set" if key else None)
        return {"provider": self.provider_id.value, "api_key": hint, "requires_key": self.requires_key}


@dataclass(frozen=True)
class MealEntry:
    name: str
    ingredients_used: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DayPlan:
    label: str
    focus: str
    meals: Dict[str, MealEntry]

    def meal(self, slot: str) -> MealEntry:
        return self.meals[slot]


@dataclass(frozen=True)
class MealPlan:
    pantry_summary: List[str]
    days: List[DayPlan]

    def to_dict(self) -> Dict[str, Any]:
        """Return the canonical snake_case document (same shape as the prompt asks for)."""
        return {
            "pantry_summary": list(self.pantry_summary),
            "days": [
                {
                    "day": d.label,
                    "focus": d.focus,
                    "meals": {
                        slot: {"name": d.meals[slot].name, "ingredients_used": list(d.meals[slot].ingredients_used)}
                        for slot in MEAL_SLOTS
                    },
                }
                for d in self.days
            ],
        }


@dataclass
class WorkflowState:
    stage: Stage = Stage.UPLOAD
    extracted_text: str = ""
    meal_plan: Optional[MealPlan] = None
    is_busy: bool = False

    def snapshot(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "extracted_text": self.extracted_text,
            "meal_plan": self.meal_plan.to_dict() if self.meal_plan is not None else None,
            "is_busy": self.is_busy,
        }
