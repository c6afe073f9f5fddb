from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.staticfiles import StaticFiles

from ..logging import get_logger
from ..workflow.controller import TransitionResult, WorkflowController


LOG = get_logger("web")

MAX_UPLOAD_BYTES = 15 * 1024 * 1024

ERROR_STATUS: Dict[str, int] = {
    "AlreadyInProgress": 409,
    "InvalidTransition": 409,
    "MissingCredential": 428,
    "EngineNotReady": 503,
    "RecognitionFailed": 422,
    "ProviderUnavailable": 502,
    "MalformedPlan": 502,
}


def _result_response(controller: WorkflowController, result: TransitionResult) -> JSONResponse:
    payload: Dict[str, Any] = result.as_dict()
    payload["state"] = controller.snapshot()
    status = 200 if result.ok else ERROR_STATUS.get(result.error_kind or "", 400)
    return JSONResponse(payload, status_code=status)


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def create_app(
    controller: WorkflowController,
    *,
    allow_origins: Optional[List[str]] = None,
    static_dir: Optional[str] = None,
) -> Starlette:
    """Create a Starlette app exposing the workflow transitions as a JSON API."""

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "ocr_engine": controller.ocr.holder.describe()})

    async def state(_: Request) -> JSONResponse:
        return JSONResponse(controller.snapshot())

    async def upload(request: Request) -> JSONResponse:
        data = await request.body()
        if not data:
            raise HTTPException(status_code=400, detail="Request body must contain the receipt image")
        if len(data) > MAX_UPLOAD_BYTES:
            raise HTTPException(status_code=413, detail="Image too large")
        LOG.info(f"Upload received ({len(data)} bytes)")
        return _result_response(controller, await controller.submit_image(data))

    async def edit_text(request: Request) -> JSONResponse:
        body = await _json_body(request)
        text = body.get("text")
        if not isinstance(text, str):
            raise HTTPException(status_code=400, detail="'text' must be a string")
        return _result_response(controller, controller.edit_text(text))

    async def plan(_: Request) -> JSONResponse:
        return _result_response(controller, await controller.confirm_text())

    async def restart(_: Request) -> JSONResponse:
        return _result_response(controller, controller.restart())

    async def get_settings(_: Request) -> JSONResponse:
        return JSONResponse(controller.provider_config.masked())

    async def put_settings(request: Request) -> JSONResponse:
        body = await _json_body(request)
        provider = body.get("provider")
        api_key = body.get("api_key")
        if provider is not None and not isinstance(provider, str):
            raise HTTPException(status_code=400, detail="'provider' must be a string")
        if api_key is not None and not isinstance(api_key, str):
            raise HTTPException(status_code=400, detail="'api_key' must be a string")
        config = controller.update_settings(provider_id=provider, api_key=api_key)
        return JSONResponse(config.masked())

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/state", state, methods=["GET"]),
        Route("/api/upload", upload, methods=["POST"]),
        Route("/api/text", edit_text, methods=["PUT"]),
        Route("/api/plan", plan, methods=["POST"]),
        Route("/api/restart", restart, methods=["POST"]),
        Route("/api/settings", get_settings, methods=["GET"]),
        Route("/api/settings", put_settings, methods=["PUT"]),
    ]

    app = Starlette(debug=False, routes=routes)

    origins = allow_origins or ["http://localhost:5173", "http://127.0.0.1:5173"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if static_dir:
        candidate = os.path.abspath(static_dir)
        if os.path.isdir(candidate):
            LOG.info("Serving static frontend from %s", candidate)
            app.mount("/", StaticFiles(directory=candidate, html=True), name="frontend")
        else:
            LOG.warning("Frontend build not found at %s; API will run without static assets.", candidate)

    return app


__all__ = ["create_app", "ERROR_STATUS"]
