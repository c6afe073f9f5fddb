"""Persistence of the user's provider choice and API key."""

from __future__ import annotations

import os
import sqlite3
from typing import Dict, Optional

from .domain.models import ProviderConfig, ProviderId
from .logging import get_logger
from .paths import settings_dir

LOG = get_logger("settings")

PROVIDER_KEY = "r2r_provider"
API_KEY_KEY = "r2r_api_key"

DB_FILENAME = "settings.sqlite3"
TABLE_NAME = "settings"


class _KeyValueStore:
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def load_provider_config(
        self,
        *,
        default_provider: Optional[str] = None,
        default_api_key: Optional[str] = None,
    ) -> ProviderConfig:
        """Read both settings once; defaults only fill values never stored."""
        provider = self.get(PROVIDER_KEY)
        api_key = self.get(API_KEY_KEY)
        if provider is None:
            provider = default_provider
        if api_key is None:
            api_key = default_api_key
        return ProviderConfig(provider_id=ProviderId.parse(provider), api_key=api_key or None)

    def save_provider_config(self, config: ProviderConfig) -> None:
        self.set(PROVIDER_KEY, config.provider_id.value)
        self.set(API_KEY_KEY, config.api_key or "")


class MemorySettingsStore(_KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.values: Dict[str, str] = dict(initial or {})
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value
        self.writes += 1


class SettingsStore(_KeyValueStore):
    """SQLite-backed key/value store under ``var/settings`` at the project root."""

    def __init__(self, root_dir: Optional[str] = None, *, db_path: Optional[str] = None) -> None:
        if db_path is None:
            db_path = os.path.join(settings_dir(root_dir or os.getcwd()), DB_FILENAME)
        else:
            os.makedirs(os.path.dirname(os.path.abspath(db_path)) or ".", exist_ok=True)
        self.db_path = db_path
        self._ensure_schema()
        LOG.debug(f"Settings store ready at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT DEFAULT (datetime('now'))
                );
                """
            )
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute(f"SELECT value FROM {TABLE_NAME} WHERE key = ?", (key,)).fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                f"""
                INSERT INTO {TABLE_NAME} (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = datetime('now')
                """,
                (key, value),
            )
            conn.commit()
        finally:
            conn.close()
        LOG.debug(f"Persisted setting {key}")
