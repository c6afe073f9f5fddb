"""Wire a configured WorkflowController from CLI args, env/.env and settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from ..config import (
    load_gemini_default_key as _cfg_load_gemini_default_key,
    load_ocr_language as _cfg_load_ocr_language,
    load_provider_endpoints as _cfg_load_provider_endpoints,
    load_provider_settings as _cfg_load_provider_settings,
    load_timeout as _cfg_load_timeout,
)
from ..logging import get_logger
from ..ocr.engine import EngineHolder, EngineStatus, default_holder
from ..ocr.pipeline import OcrPipeline
from ..paths import expand_abs, find_project_root
from ..providers.backends import build_backends
from ..providers.gateway import ProviderGateway
from ..settings import SettingsStore
from .controller import ProgressListener, WorkflowController

LOG = get_logger("session")


@dataclass
class SessionConfig:
    root_dir: str
    ocr_language: str
    timeout: int
    gemini_default_key: Optional[str]
    endpoints: Dict[str, Tuple[str, str]]
    seed_provider: Optional[str]
    seed_api_key: Optional[str]
    settings_path: Optional[str] = None


def build_session_config(args=None, *, script_dir: Optional[str] = None) -> SessionConfig:
    """Create a SessionConfig from CLI args (if any) while logging diagnostics."""
    script_dir = script_dir or os.getcwd()
    root_dir = find_project_root(script_dir)

    seed_provider, seed_api_key = _cfg_load_provider_settings(script_dir)
    ocr_language = getattr(args, "lang", None) or _cfg_load_ocr_language(script_dir)
    timeout = getattr(args, "timeout", None) or _cfg_load_timeout(script_dir)
    settings_path = getattr(args, "settings_db", None)

    config = SessionConfig(
        root_dir=root_dir,
        ocr_language=ocr_language,
        timeout=int(timeout),
        gemini_default_key=_cfg_load_gemini_default_key(script_dir),
        endpoints=_cfg_load_provider_endpoints(script_dir),
        seed_provider=seed_provider,
        seed_api_key=seed_api_key,
        settings_path=expand_abs(settings_path) if settings_path else None,
    )

    LOG.info("Session configuration prepared")
    LOG.info(f"Project root       : {config.root_dir}")
    LOG.info(f"OCR language       : {config.ocr_language}")
    LOG.info(f"Provider timeout   : {config.timeout}s")
    LOG.info(f"Gemini default key : {'configured' if config.gemini_default_key else 'none'}")
    for provider, (endpoint, model) in config.endpoints.items():
        LOG.debug(f"{provider:<9} -> {endpoint} ({model})")
    return config


def open_settings_store(config: SessionConfig) -> SettingsStore:
    if config.settings_path:
        return SettingsStore(db_path=config.settings_path)
    return SettingsStore(config.root_dir)


def build_controller(
    config: SessionConfig,
    *,
    store=None,
    holder: Optional[EngineHolder] = None,
    gateway: Optional[ProviderGateway] = None,
    on_progress: Optional[ProgressListener] = None,
) -> WorkflowController:
    """Load settings once, start the lazy engine load, and return the controller."""
    store = store if store is not None else open_settings_store(config)
    provider_config = store.load_provider_config(
        default_provider=config.seed_provider,
        default_api_key=config.seed_api_key,
    )

    holder = holder or default_holder()
    status = holder.load()
    if status is not EngineStatus.READY:
        LOG.warning(f"OCR engine status: {status.value}; image uploads will be rejected")

    if gateway is None:
        backends = build_backends(config.endpoints, gemini_default_key=config.gemini_default_key)
        gateway = ProviderGateway(backends, timeout=config.timeout)

    return WorkflowController(
        OcrPipeline(holder, language=config.ocr_language),
        gateway,
        provider_config=provider_config,
        settings_store=store,
        on_progress=on_progress,
    )
