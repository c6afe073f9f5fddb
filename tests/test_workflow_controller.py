import asyncio
import json
import threading

import pytest

from receipt_planner.domain.errors import RecognitionFailed
from receipt_planner.domain.models import ProviderConfig, ProviderId, Stage
from receipt_planner.settings import API_KEY_KEY, PROVIDER_KEY, MemorySettingsStore

from conftest import (
    RECEIPT_TEXT,
    FakeEngine,
    FakeSession,
    chat_body,
    gemini_body,
    make_controller,
    make_response,
    plan_dict,
    plan_json,
    state_copy,
)


def _to_review(controller):
    result = asyncio.run(controller.submit_image(b"receipt-bytes"))
    assert result.ok, result.message
    return result


def _assert_invariants(controller):
    state = controller.state
    assert (state.meal_plan is not None) == (state.stage is Stage.PLAN)
    if state.stage is not Stage.UPLOAD:
        assert state.extracted_text
    assert state.is_busy is False


# ---------- submit_image ----------
def test_submit_image_moves_to_review_with_exact_text():
    progress = []
    controller = make_controller(on_progress=progress.append)

    result = asyncio.run(controller.submit_image(b"receipt-bytes"))

    assert result.ok
    assert result.stage is Stage.REVIEW
    assert controller.state.stage is Stage.REVIEW
    assert controller.state.extracted_text == RECEIPT_TEXT
    assert controller.state.meal_plan is None
    assert [e.percent for e in progress] == [0, 25, 50, 100]
    _assert_invariants(controller)


def test_progress_does_not_touch_stage_or_text():
    seen = []

    def listener(event):
        seen.append((event.percent, controller.state.stage, controller.state.extracted_text, controller.state.is_busy))

    controller = make_controller(on_progress=listener)
    asyncio.run(controller.submit_image(b"img"))

    assert seen
    assert all(stage is Stage.UPLOAD and text == "" and busy for _, stage, text, busy in seen)


def test_listener_errors_do_not_abort_recognition():
    def listener(_):
        raise ValueError("render failed")

    controller = make_controller(on_progress=listener)
    assert asyncio.run(controller.submit_image(b"img")).ok
    assert controller.state.stage is Stage.REVIEW


def test_ocr_failure_stays_in_upload_and_clears_busy():
    boom = RuntimeError("bad image")
    controller = make_controller(engine=FakeEngine(error=boom))

    result = asyncio.run(controller.submit_image(b"img"))

    assert not result.ok
    assert result.error_kind == "RecognitionFailed"
    assert result.error.cause is boom
    assert controller.state.stage is Stage.UPLOAD
    assert controller.state.extracted_text == ""
    _assert_invariants(controller)


def test_blank_recognition_is_reported_and_stays_in_upload():
    controller = make_controller(engine=FakeEngine(text="  \n "))
    result = asyncio.run(controller.submit_image(b"img"))
    assert result.error_kind == "RecognitionFailed"
    assert controller.state.stage is Stage.UPLOAD
    _assert_invariants(controller)


def test_engine_not_ready_is_reported_without_recognition():
    from receipt_planner.ocr.engine import EngineHolder
    from receipt_planner.ocr.pipeline import OcrPipeline

    engine = FakeEngine()
    controller = make_controller()
    controller.ocr = OcrPipeline(EngineHolder(engine))

    result = asyncio.run(controller.submit_image(b"img"))

    assert result.error_kind == "EngineNotReady"
    assert engine.calls == []
    assert controller.state.stage is Stage.UPLOAD
    assert controller.state.is_busy is False


def test_user_can_retry_after_ocr_failure():
    engine = FakeEngine(error=RuntimeError("blurry"))
    controller = make_controller(engine=engine)
    assert not asyncio.run(controller.submit_image(b"img")).ok
    engine.error = None
    assert asyncio.run(controller.submit_image(b"img")).ok
    assert controller.state.stage is Stage.REVIEW


def test_submit_image_outside_upload_is_invalid():
    controller = make_controller()
    _to_review(controller)
    before = state_copy(controller)
    result = asyncio.run(controller.submit_image(b"img"))
    assert result.error_kind == "InvalidTransition"
    assert controller.state == before


# ---------- edit_text ----------
def test_edit_text_changes_text_not_stage():
    controller = make_controller()
    _to_review(controller)
    result = controller.edit_text("Milk\nEggs\nBread")
    assert result.ok
    assert controller.state.extracted_text == "Milk\nEggs\nBread"
    assert controller.state.stage is Stage.REVIEW


def test_edit_text_with_current_value_is_idempotent():
    controller = make_controller()
    _to_review(controller)
    before = state_copy(controller)
    assert controller.edit_text(controller.state.extracted_text).ok
    assert controller.state == before


@pytest.mark.parametrize("stage_setup", ["upload", "plan"])
def test_edit_text_only_in_review(stage_setup):
    controller = make_controller(session=FakeSession([make_response(200, gemini_body(plan_json()))]))
    if stage_setup == "plan":
        _to_review(controller)
        assert asyncio.run(controller.confirm_text()).ok
    before = state_copy(controller)
    result = controller.edit_text("anything")
    assert result.error_kind == "InvalidTransition"
    assert controller.state == before


# ---------- confirm_text ----------
def test_scenario_a_upload_edit_confirm_with_gemini():
    session = FakeSession([make_response(200, gemini_body(plan_json()))])
    controller = make_controller(session=session, config=ProviderConfig(ProviderId.GEMINI))

    asyncio.run(controller.submit_image(b"receipt-bytes"))
    assert controller.state.stage is Stage.REVIEW
    assert controller.state.extracted_text == "Milk $3.99\nEggs $4.50"

    controller.edit_text("Milk\nEggs\nBread")
    result = asyncio.run(controller.confirm_text())

    assert result.ok
    assert controller.state.stage is Stage.PLAN
    plan = controller.state.meal_plan
    assert len(plan.days) == 3
    assert {"Milk", "Eggs", "Bread"} <= set(plan.pantry_summary)
    assert "Milk\nEggs\nBread" in session.calls[0]["json"]["contents"][0]["parts"][0]["text"]
    _assert_invariants(controller)


def test_scenario_b_deepseek_without_key():
    session = FakeSession([make_response(200, chat_body(plan_json()))])
    controller = make_controller(session=session, config=ProviderConfig(ProviderId.DEEPSEEK, ""))
    _to_review(controller)

    result = asyncio.run(controller.confirm_text())

    assert result.error_kind == "MissingCredential"
    assert "Configuration required" in result.message
    assert controller.state.stage is Stage.REVIEW
    assert session.calls == []
    _assert_invariants(controller)


def test_scenario_c_two_days_is_malformed():
    session = FakeSession([make_response(200, gemini_body(plan_json(2)))])
    controller = make_controller(session=session)
    _to_review(controller)

    result = asyncio.run(controller.confirm_text())

    assert result.error_kind == "MalformedPlan"
    assert controller.state.stage is Stage.REVIEW
    assert controller.state.meal_plan is None
    _assert_invariants(controller)


def test_deeply_nested_plan_is_reported_and_stays_in_review():
    nested = "[" * 100000 + "]" * 100000
    session = FakeSession([make_response(200, gemini_body(nested))])
    controller = make_controller(session=session)
    _to_review(controller)

    result = asyncio.run(controller.confirm_text())

    assert result.error_kind == "MalformedPlan"
    assert controller.state.stage is Stage.REVIEW
    assert controller.state.meal_plan is None
    _assert_invariants(controller)


def test_provider_failure_stays_in_review_with_distinct_message():
    body = {"error": {"message": "Quota exceeded"}}
    session = FakeSession([make_response(429, body, reason="Too Many Requests")])
    controller = make_controller(session=session, config=ProviderConfig(ProviderId.OPENAI, "sk"))
    _to_review(controller)

    result = asyncio.run(controller.confirm_text())

    assert result.error_kind == "ProviderUnavailable"
    assert "Quota exceeded" in result.message
    assert controller.state.stage is Stage.REVIEW
    _assert_invariants(controller)


def test_error_messages_differ_per_kind():
    from receipt_planner.domain.errors import MalformedPlan, MissingCredential, ProviderUnavailable

    messages = {
        MissingCredential.user_message,
        ProviderUnavailable.user_message,
        MalformedPlan.user_message,
    }
    assert len(messages) == 3


def test_confirm_with_empty_text_is_rejected_without_request():
    session = FakeSession([make_response(200, gemini_body(plan_json()))])
    controller = make_controller(session=session)
    _to_review(controller)
    controller.edit_text("   ")
    result = asyncio.run(controller.confirm_text())
    assert result.error_kind == "InvalidTransition"
    assert session.calls == []
    assert controller.state.stage is Stage.REVIEW


def test_confirm_in_upload_is_invalid():
    session = FakeSession([make_response(200, gemini_body(plan_json()))])
    controller = make_controller(session=session)
    result = asyncio.run(controller.confirm_text())
    assert result.error_kind == "InvalidTransition"
    assert session.calls == []


def test_second_confirm_while_pending_is_rejected():
    gate = threading.Event()
    session = FakeSession([make_response(200, chat_body(plan_json()))], gate=gate)
    controller = make_controller(session=session, config=ProviderConfig(ProviderId.OPENAI, "sk"))
    _to_review(controller)

    async def scenario():
        first = asyncio.create_task(controller.confirm_text())
        await asyncio.sleep(0)
        assert controller.state.is_busy
        second = await controller.confirm_text()
        restart = controller.restart()
        edit = controller.edit_text("other")
        gate.set()
        return await first, second, restart, edit

    first, second, restart, edit = asyncio.run(scenario())

    assert second.error_kind == "AlreadyInProgress"
    assert restart.error_kind == "AlreadyInProgress"
    assert edit.error_kind == "AlreadyInProgress"
    assert first.ok
    assert len(session.calls) == 1
    assert controller.state.stage is Stage.PLAN
    assert controller.state.extracted_text == RECEIPT_TEXT


def test_submit_while_ocr_running_is_rejected():
    gate = threading.Event()
    engine = FakeEngine(gate=gate)
    controller = make_controller(engine=engine)

    async def scenario():
        first = asyncio.create_task(controller.submit_image(b"one"))
        await asyncio.sleep(0)
        second = await controller.submit_image(b"two")
        gate.set()
        return await first, second

    first, second = asyncio.run(scenario())
    assert first.ok
    assert second.error_kind == "AlreadyInProgress"
    assert [c[0] for c in engine.calls] == [b"one"]


def test_settings_change_during_generation_does_not_affect_inflight_call():
    gate = threading.Event()
    session = FakeSession([make_response(200, gemini_body(plan_json()))], gate=gate)
    controller = make_controller(session=session, config=ProviderConfig(ProviderId.GEMINI))
    _to_review(controller)

    async def scenario():
        task = asyncio.create_task(controller.confirm_text())
        await asyncio.sleep(0)
        controller.update_settings(provider_id="openai", api_key="sk-new")
        gate.set()
        return await task

    assert asyncio.run(scenario()).ok
    assert "generativelanguage" in session.calls[0]["url"]
    assert controller.provider_config.provider_id is ProviderId.OPENAI


# ---------- restart ----------
def test_restart_from_plan_clears_everything():
    session = FakeSession([make_response(200, gemini_body(plan_json()))])
    controller = make_controller(session=session)
    _to_review(controller)
    asyncio.run(controller.confirm_text())

    result = controller.restart()

    assert result.ok
    assert controller.state.stage is Stage.UPLOAD
    assert controller.state.extracted_text == ""
    assert controller.state.meal_plan is None
    _assert_invariants(controller)


def test_restart_from_upload_is_allowed():
    controller = make_controller()
    assert controller.restart().ok


# ---------- settings ----------
def test_settings_are_loaded_once_and_persisted_on_change():
    store = MemorySettingsStore({PROVIDER_KEY: "deepseek", API_KEY_KEY: "sk-stored"})
    controller = make_controller(store=store, config=None)
    controller.provider_config = store.load_provider_config()
    assert controller.provider_config == ProviderConfig(ProviderId.DEEPSEEK, "sk-stored")

    controller.update_settings(provider_id="openai")
    assert store.values[PROVIDER_KEY] == "openai"
    assert store.values[API_KEY_KEY] == "sk-stored"

    controller.update_settings(api_key="")
    assert store.values[API_KEY_KEY] == ""
    assert controller.provider_config.api_key is None


def test_controller_reads_store_when_no_config_given():
    from receipt_planner.ocr.pipeline import OcrPipeline
    from receipt_planner.workflow.controller import WorkflowController
    from conftest import make_gateway, ready_holder

    store = MemorySettingsStore({PROVIDER_KEY: "openai", API_KEY_KEY: "sk-x"})
    controller = WorkflowController(OcrPipeline(ready_holder()), make_gateway(FakeSession()), settings_store=store)
    assert controller.provider_config.provider_id is ProviderId.OPENAI
    assert store.writes == 0


def test_snapshot_exposes_plan_as_canonical_document():
    session = FakeSession([make_response(200, gemini_body(plan_json()))])
    controller = make_controller(session=session)
    _to_review(controller)
    asyncio.run(controller.confirm_text())

    snap = controller.snapshot()
    assert snap["stage"] == "plan"
    assert snap["meal_plan"] == plan_dict()
    assert json.dumps(snap)
