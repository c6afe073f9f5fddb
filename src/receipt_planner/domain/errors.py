from __future__ import annotations

from typing import Optional


class PlannerError(Exception):
    """Base class for every failure the workflow can report.

    ``kind`` is a stable identifier surfaces can switch on; ``user_message``
    is the text shown to the person driving the workflow.
    """

    kind = "PlannerError"
    user_message = "Something went wrong."

    def __init__(self, detail: Optional[str] = None) -> None:
        self.detail = detail
        super().__init__(detail or self.user_message)

    def describe(self) -> str:
        if self.detail and self.detail != self.user_message:
            return f"{self.user_message} ({self.detail})"
        return self.user_message


# ---------- OCR ----------
class OcrError(PlannerError):
    kind = "OcrError"
    user_message = "Failed to read receipt."


class EngineNotReady(OcrError):
    kind = "EngineNotReady"
    user_message = "OCR engine is still loading or unavailable. Please wait a moment."


class RecognitionFailed(OcrError):
    kind = "RecognitionFailed"
    user_message = "Failed to read receipt. Please try a clearer image."

    def __init__(self, detail: Optional[str] = None, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(detail)
        self.cause = cause


# ---------- generation ----------
class GenerationError(PlannerError):
    kind = "GenerationError"
    user_message = "Generation failed."


class MissingCredential(GenerationError):
    kind = "MissingCredential"
    user_message = "Configuration required: this provider needs an API key."

    def __init__(self, provider: str) -> None:
        super().__init__(f"no API key configured for {provider}")
        self.provider = provider


class ProviderUnavailable(GenerationError):
    kind = "ProviderUnavailable"
    user_message = "The meal-plan provider could not be reached."

    def __init__(self, detail: str, *, provider: str, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.provider = provider
        self.status_code = status_code


# ---------- controller ----------
class AlreadyInProgress(PlannerError):
    kind = "AlreadyInProgress"
    user_message = "Another step is still running. Please wait for it to finish."


class InvalidTransition(PlannerError):
    kind = "InvalidTransition"
    user_message = "That action is not available right now."


# ---------- normalizer ----------
class MalformedPlan(PlannerError):
    kind = "MalformedPlan"
    user_message = "The provider returned a meal plan in an unexpected format."

    def __init__(self, detail: str, *, path: str = "$") -> None:
        super().__init__(f"{path}: {detail}")
        self.path = path
