from __future__ import annotations

import copy
import json
import threading
from typing import Any, Dict, List, Optional, Sequence

import requests

from receipt_planner.domain.models import ProviderConfig, ProviderId
from receipt_planner.ocr.engine import EngineHolder
from receipt_planner.ocr.pipeline import OcrPipeline
from receipt_planner.providers.backends import build_backends
from receipt_planner.providers.gateway import ProviderGateway
from receipt_planner.settings import MemorySettingsStore
from receipt_planner.workflow.controller import WorkflowController


RECEIPT_TEXT = "Milk $3.99\nEggs $4.50"


class FakeEngine:
    """Stands in for Tesseract: records calls and replays scripted progress."""

    def __init__(
        self,
        text: str = RECEIPT_TEXT,
        *,
        progress: Sequence[float] = (0.0, 0.25, 0.5, 1.0),
        error: Optional[BaseException] = None,
        load_error: Optional[BaseException] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.text = text
        self.progress = list(progress)
        self.error = error
        self.load_error = load_error
        self.gate = gate
        self.loads = 0
        self.calls: List[Any] = []

    def load(self) -> None:
        self.loads += 1
        if self.load_error is not None:
            raise self.load_error

    def recognize(self, image, language, on_progress):
        self.calls.append((image, language))
        for p in self.progress:
            on_progress(p)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.text


def make_response(status: int = 200, body: Any = None, *, text: Optional[str] = None, reason: Optional[str] = None) -> requests.Response:
    r = requests.Response()
    r.status_code = status
    r.reason = reason if reason is not None else ("OK" if status < 400 else "Bad Request")
    if body is not None:
        r._content = json.dumps(body).encode("utf-8")
    else:
        r._content = (text or "").encode("utf-8")
    r.encoding = "utf-8"
    return r


class FakeSession:
    """Minimal requests.Session double; every post is recorded."""

    def __init__(self, responses: Sequence[Any] = (), *, gate: Optional[threading.Event] = None) -> None:
        self.responses = list(responses)
        self.headers: Dict[str, str] = {}
        self.calls: List[Dict[str, Any]] = []
        self.gate = gate
        self.closed = False

    def post(self, url, params=None, headers=None, json=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "json": json, "timeout": timeout})
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if not self.responses:
            raise AssertionError("unexpected request")
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


def plan_dict(day_count: int = 3) -> Dict[str, Any]:
    days = []
    for i in range(1, day_count + 1):
        days.append(
            {
                "day": f"Day {i}",
                "focus": "Eat the Fresh Stuff" if i == 1 else "Leftover Logic",
                "meals": {
                    "breakfast": {"name": f"Scrambled Eggs {i}", "ingredients_used": ["Eggs", "Milk"]},
                    "lunch": {"name": f"French Toast {i}", "ingredients_used": ["Bread", "Eggs"]},
                    "dinner": {"name": f"Bread Pudding {i}", "ingredients_used": ["Bread", "Milk", "Eggs"]},
                },
            }
        )
    return {"pantry_summary": ["Milk", "Eggs", "Bread"], "days": days}


def plan_json(day_count: int = 3) -> str:
    return json.dumps(plan_dict(day_count))


def gemini_body(text: str) -> Dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}


def chat_body(text: str) -> Dict[str, Any]:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": text}}]}


def ready_holder(engine: Optional[FakeEngine] = None) -> EngineHolder:
    holder = EngineHolder(engine or FakeEngine())
    holder.load()
    return holder


def make_gateway(session: FakeSession, *, gemini_default_key: Optional[str] = None) -> ProviderGateway:
    return ProviderGateway(build_backends(gemini_default_key=gemini_default_key), timeout=5, session=session)


def make_controller(
    *,
    engine: Optional[FakeEngine] = None,
    session: Optional[FakeSession] = None,
    config: Optional[ProviderConfig] = None,
    store: Optional[MemorySettingsStore] = None,
    on_progress=None,
) -> WorkflowController:
    return WorkflowController(
        OcrPipeline(ready_holder(engine)),
        make_gateway(session or FakeSession()),
        provider_config=config or ProviderConfig(ProviderId.GEMINI),
        settings_store=store,
        on_progress=on_progress,
    )


def state_copy(controller: WorkflowController):
    return copy.deepcopy(controller.state)
