"""Upload -> Review -> Plan state machine with a single busy guard."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional

from ..domain.errors import (
    AlreadyInProgress,
    GenerationError,
    InvalidTransition,
    MalformedPlan,
    MissingCredential,
    OcrError,
    PlannerError,
    RecognitionFailed,
)
from ..domain.models import MealPlan, ProviderConfig, ProviderId, Stage, WorkflowState
from ..domain.normalize import normalize_plan
from ..logging import get_logger
from ..ocr.engine import ImageSource
from ..ocr.pipeline import OcrPipeline, ProgressEvent
from ..providers.gateway import ProviderGateway

LOG = get_logger("workflow")

ProgressListener = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    stage: Stage
    message: str = ""
    error: Optional[PlannerError] = None

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error is not None else None

    def as_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "stage": self.stage.value, "message": self.message, "error": self.error_kind}


class WorkflowController:
    """Owns the one WorkflowState of a session and every transition on it.

    Transitions never raise: failures come back as a TransitionResult with
    the stage left where it was and the busy flag cleared. While an OCR or
    generation call is in flight every other transition is rejected with
    AlreadyInProgress.
    """

    def __init__(
        self,
        ocr: OcrPipeline,
        gateway: ProviderGateway,
        *,
        provider_config: Optional[ProviderConfig] = None,
        settings_store: Any = None,
        normalizer: Callable[[str], MealPlan] = normalize_plan,
        on_progress: Optional[ProgressListener] = None,
    ) -> None:
        self.ocr = ocr
        self.gateway = gateway
        self.settings_store = settings_store
        self.normalizer = normalizer
        self.on_progress = on_progress
        self.state = WorkflowState()
        self.ocr_progress: Optional[int] = None
        if provider_config is None:
            provider_config = settings_store.load_provider_config() if settings_store is not None else ProviderConfig()
        self.provider_config = provider_config
        LOG.info(f"Workflow ready (provider={self.provider_config.provider_id.value})")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _ok(self, message: str) -> TransitionResult:
        return TransitionResult(ok=True, stage=self.state.stage, message=message)

    def _fail(self, action: str, error: PlannerError) -> TransitionResult:
        if isinstance(error, (AlreadyInProgress, InvalidTransition, MissingCredential)):
            LOG.warning(f"{action} rejected: {error.describe()}")
        else:
            LOG.error(f"{action} failed [{error.kind}]: {error}")
        return TransitionResult(ok=False, stage=self.state.stage, message=error.describe(), error=error)

    def _guard(self, action: str, *stages: Stage) -> Optional[TransitionResult]:
        if self.state.is_busy:
            return self._fail(action, AlreadyInProgress(f"{action} while busy"))
        if stages and self.state.stage not in stages:
            allowed = "/".join(s.value for s in stages)
            return self._fail(action, InvalidTransition(f"{action} requires stage {allowed}, current is {self.state.stage.value}"))
        return None

    def _emit_progress(self, event: ProgressEvent) -> None:
        self.ocr_progress = event.percent
        if self.on_progress is None:
            return
        try:
            self.on_progress(event)
        except Exception:
            LOG.exception("Progress listener raised; continuing recognition")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    async def submit_image(self, image: ImageSource) -> TransitionResult:
        blocked = self._guard("submit_image", Stage.UPLOAD)
        if blocked is not None:
            return blocked

        self.state.is_busy = True
        self.ocr_progress = 0
        text = ""
        try:
            async for event in self.ocr.stream(image):
                if isinstance(event, ProgressEvent):
                    self._emit_progress(event)
                else:
                    text = event.text
            if not text.strip():
                raise RecognitionFailed("no text detected")
        except OcrError as exc:
            self.ocr_progress = None
            return self._fail("submit_image", exc)
        finally:
            self.state.is_busy = False

        self.state.extracted_text = text
        self.state.stage = Stage.REVIEW
        LOG.info(f"Receipt read ({len(text)} characters); moved to review")
        return self._ok("Receipt text extracted. Review and correct it before planning.")

    def edit_text(self, new_text: str) -> TransitionResult:
        blocked = self._guard("edit_text", Stage.REVIEW)
        if blocked is not None:
            return blocked
        if new_text != self.state.extracted_text:
            self.state.extracted_text = new_text
            LOG.debug(f"Receipt text edited ({len(new_text)} characters)")
        return self._ok("Receipt text updated.")

    async def confirm_text(self) -> TransitionResult:
        blocked = self._guard("confirm_text", Stage.REVIEW)
        if blocked is not None:
            return blocked
        text = self.state.extracted_text
        if not text.strip():
            return self._fail("confirm_text", InvalidTransition("receipt text is empty"))

        config = self.provider_config
        try:
            self.gateway.check_credentials(config)
        except MissingCredential as exc:
            return self._fail("confirm_text", exc)

        self.state.is_busy = True
        try:
            raw = await asyncio.to_thread(self.gateway.generate_plan, config, text)
            plan = self.normalizer(raw)
        except (GenerationError, MalformedPlan) as exc:
            return self._fail("confirm_text", exc)
        finally:
            self.state.is_busy = False

        self.state.meal_plan = plan
        self.state.stage = Stage.PLAN
        LOG.info(f"Meal plan ready: {len(plan.days)} days, {len(plan.pantry_summary)} pantry item(s)")
        return self._ok("Meal plan created.")

    def restart(self) -> TransitionResult:
        blocked = self._guard("restart")
        if blocked is not None:
            return blocked
        self.state.stage = Stage.UPLOAD
        self.state.extracted_text = ""
        self.state.meal_plan = None
        self.ocr_progress = None
        LOG.info("Workflow restarted")
        return self._ok("Ready for a new receipt.")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def update_settings(self, *, provider_id: Optional[Any] = None, api_key: Optional[str] = None) -> ProviderConfig:
        """Change provider and/or key and persist the result.

        A generation already in flight keeps the config it started with.
        """
        changes: Dict[str, Any] = {}
        if provider_id is not None:
            changes["provider_id"] = ProviderId.parse(provider_id)
        if api_key is not None:
            changes["api_key"] = api_key.strip() or None
        if changes:
            self.provider_config = replace(self.provider_config, **changes)
            if self.settings_store is not None:
                self.settings_store.save_provider_config(self.provider_config)
            LOG.info(
                f"Settings updated (provider={self.provider_config.provider_id.value}, "
                f"key={'set' if self.provider_config.has_key else 'empty'})"
            )
        return self.provider_config

    def snapshot(self) -> Dict[str, Any]:
        snap = self.state.snapshot()
        snap["ocr_progress"] = self.ocr_progress
        snap["settings"] = self.provider_config.masked()
        return snap
