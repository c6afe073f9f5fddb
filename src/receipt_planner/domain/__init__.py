"""Domain types, error taxonomy and plan normalization."""

from .errors import (
    AlreadyInProgress,
    EngineNotReady,
    GenerationError,
    InvalidTransition,
    MalformedPlan,
    MissingCredential,
    OcrError,
    PlannerError,
    ProviderUnavailable,
    RecognitionFailed,
)
from .models import (
    MEAL_SLOTS,
    DayPlan,
    MealEntry,
    MealPlan,
    ProviderConfig,
    ProviderId,
    Stage,
    WorkflowState,
)
from .normalize import normalize_plan

__all__ = [
    "AlreadyInProgress",
    "EngineNotReady",
    "GenerationError",
    "InvalidTransition",
    "MalformedPlan",
    "MissingCredential",
    "OcrError",
    "PlannerError",
    "ProviderUnavailable",
    "RecognitionFailed",
    "MEAL_SLOTS",
    "DayPlan",
    "MealEntry",
    "MealPlan",
    "ProviderConfig",
    "ProviderId",
    "Stage",
    "WorkflowState",
    "normalize_plan",
]
