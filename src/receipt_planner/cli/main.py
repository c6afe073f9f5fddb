from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from dataclasses import replace
from typing import List, Sequence

from ..domain.errors import OcrError
from ..domain.models import MEAL_SLOTS, MealPlan, ProviderId
from ..logging import get_logger
from ..ocr.engine import default_holder
from ..ocr.pipeline import OcrPipeline, ProgressEvent
from ..paths import expand_abs
from ..workflow.controller import TransitionResult, WorkflowController
from ..workflow.session import build_controller, build_session_config, open_settings_store

LOG = get_logger("cli-main")


def format_plan(plan: MealPlan) -> str:
    lines: List[str] = []
    lines.append("Detected ingredients: " + (", ".join(plan.pantry_summary) or "-"))
    for day in plan.days:
        lines.append("")
        lines.append(f"{day.label} - {day.focus}")
        for slot in MEAL_SLOTS:
            meal = day.meal(slot)
            uses = ", ".join(meal.ingredients_used) or "-"
            lines.append(f"  {slot.capitalize():<10} {meal.name}")
            lines.append(f"  {'':<10} Uses: {uses}")
    return "\n".join(lines)


def _log_progress(event: ProgressEvent) -> None:
    LOG.info(f"Reading receipt... {event.percent}%")


def _report(result: TransitionResult) -> int:
    if result.ok:
        LOG.info(result.message)
        return 0
    LOG.error(f"[{result.error_kind}] {result.message}")
    return 2 if result.error_kind in ("MissingCredential", "EngineNotReady") else 1


def _add_session_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--lang", help="Tesseract language code (defaults to OCR_LANGUAGE or 'eng')")
    p.add_argument("--timeout", type=int, help="HTTP timeout in seconds for provider requests")
    p.add_argument("--settings-db", help="Path to the settings database (default: var/settings/settings.sqlite3)")


def _handle_ocr(ns: argparse.Namespace) -> int:
    image = expand_abs(ns.image)
    if not os.path.isfile(image):
        LOG.error(f"Image not found: {image}")
        return 2
    config = build_session_config(ns)
    holder = default_holder()
    holder.load()
    pipeline = OcrPipeline(holder, language=config.ocr_language)

    try:
        text = asyncio.run(pipeline.extract_text(image, on_progress=_log_progress))
    except OcrError as exc:
        LOG.error(f"[{exc.kind}] {exc.describe()}")
        return 2 if exc.kind == "EngineNotReady" else 1
    print(text)
    return 0


async def _run_plan(controller: WorkflowController, ns: argparse.Namespace) -> int:
    result = await controller.submit_image(expand_abs(ns.image))
    if not result.ok:
        return _report(result)
    LOG.info("Extracted receipt text:\n" + controller.state.extracted_text)

    if ns.edited_text_file:
        with open(expand_abs(ns.edited_text_file), "r", encoding="utf-8") as f:
            edited = f.read()
        result = controller.edit_text(edited)
        if not result.ok:
            return _report(result)

    result = await controller.confirm_text()
    if not result.ok:
        return _report(result)

    plan = controller.state.meal_plan
    if ns.json:
        print(json.dumps(plan.to_dict(), ensure_ascii=False, indent=2))
    else:
        print(format_plan(plan))
    return 0


def _handle_plan(ns: argparse.Namespace) -> int:
    if not os.path.isfile(expand_abs(ns.image)):
        LOG.error(f"Image not found: {ns.image}")
        return 2
    config = build_session_config(ns)
    controller = build_controller(config, on_progress=_log_progress)
    if ns.provider or ns.api_key is not None:
        controller.update_settings(provider_id=ns.provider, api_key=ns.api_key)
    return asyncio.run(_run_plan(controller, ns))


def _handle_settings_show(ns: argparse.Namespace) -> int:
    config = build_session_config(ns)
    store = open_settings_store(config)
    current = store.load_provider_config(default_provider=config.seed_provider, default_api_key=config.seed_api_key)
    print(json.dumps(current.masked(), ensure_ascii=False))
    return 0


def _handle_settings_set(ns: argparse.Namespace) -> int:
    if ns.provider is None and ns.api_key is None:
        LOG.error("Nothing to update. Provide --provider and/or --api-key.")
        return 2
    config = build_session_config(ns)
    store = open_settings_store(config)
    current = store.load_provider_config(default_provider=config.seed_provider, default_api_key=config.seed_api_key)
    if ns.provider is not None:
        current = replace(current, provider_id=ProviderId.parse(ns.provider))
    if ns.api_key is not None:
        current = replace(current, api_key=ns.api_key.strip() or None)
    store.save_provider_config(current)
    print(json.dumps(current.masked(), ensure_ascii=False))
    return 0


def _handle_serve(ns: argparse.Namespace) -> int:
    from ..web import create_app
    import uvicorn

    config = build_session_config(ns)
    controller = build_controller(config)
    app = create_app(controller, allow_origins=ns.allow_origins, static_dir=ns.static_dir)
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="receipt-planner",
        description="Turn a photographed grocery receipt into a three-day meal plan.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ocr_cmd = subparsers.add_parser("ocr", help="Extract text from a receipt image and print it.")
    ocr_cmd.add_argument("--image", required=True)
    _add_session_args(ocr_cmd)
    ocr_cmd.set_defaults(handler=_handle_ocr)

    plan_cmd = subparsers.add_parser(
        "plan",
        help="Run the whole workflow: read the receipt, optionally apply corrections, create the plan.",
    )
    plan_cmd.add_argument("--image", required=True, help="Path to the receipt image")
    plan_cmd.add_argument("--edited-text-file", help="File with corrected receipt text to use instead of the OCR output")
    plan_cmd.add_argument("--provider", choices=[p.value for p in ProviderId], help="Provider for this run (persisted)")
    plan_cmd.add_argument("--api-key", help="API key for this run (persisted)")
    plan_cmd.add_argument("--json", action="store_true", help="Print the canonical plan JSON")
    _add_session_args(plan_cmd)
    plan_cmd.set_defaults(handler=_handle_plan)

    settings_cmd = subparsers.add_parser("settings", help="Show or change the stored provider settings.")
    settings_sub = settings_cmd.add_subparsers(dest="settings_cmd", required=True)
    show = settings_sub.add_parser("show", help="Print the stored provider (key masked)")
    _add_session_args(show)
    show.set_defaults(handler=_handle_settings_show)
    set_cmd = settings_sub.add_parser("set", help="Store provider and/or API key")
    set_cmd.add_argument("--provider", choices=[p.value for p in ProviderId])
    set_cmd.add_argument("--api-key")
    _add_session_args(set_cmd)
    set_cmd.set_defaults(handler=_handle_settings_set)

    serve = subparsers.add_parser("serve", help="Run the JSON API for a browser front-end.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8002)
    serve.add_argument("--log-level", default="info")
    serve.add_argument("--static-dir", help="Directory with a built front-end to serve at /")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    _add_session_args(serve)
    serve.set_defaults(handler=_handle_serve)

    args = parser.parse_args(provided)
    code = args.handler(args)
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
