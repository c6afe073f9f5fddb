from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from ..config import DEFAULT_TIMEOUT_SECONDS
from ..domain.errors import MissingCredential, ProviderUnavailable
from ..domain.models import ProviderConfig, ProviderId
from ..logging import get_logger
from .backends import ProviderBackend, build_backends

LOG = get_logger("provider-gateway")


class ProviderGateway:
    """Single request/response contract over the configured provider backends.

    One attempt per call: credential problems fail before any request is
    sent, transport and HTTP failures surface as ProviderUnavailable, and
    nothing is retried.
    """

    def __init__(
        self,
        backends: Optional[Dict[ProviderId, ProviderBackend]] = None,
        *,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.backends = backends or build_backends()
        self.timeout = int(timeout)
        self.s = session or requests.Session()
        self.s.headers.update({"Accept": "application/json"})

    # ---------- helpers ----------
    def backend_for(self, provider_id: ProviderId) -> ProviderBackend:
        try:
            return self.backends[provider_id]
        except KeyError:
            raise ProviderUnavailable(f"no backend configured for {provider_id.value}", provider=provider_id.value) from None

    def check_credentials(self, config: ProviderConfig) -> None:
        if config.requires_key and not config.has_key:
            raise MissingCredential(config.provider_id.value)

    @staticmethod
    def _error_detail(backend: ProviderBackend, r: requests.Response) -> str:
        try:
            body: Any = r.json()
        except ValueError:
            body = None
        return backend.error_message(body) or f"API Error {r.status_code}: {r.reason or 'unknown'}"

    # ---------- public ----------
    def generate_plan(self, config: ProviderConfig, prompt_text: str) -> str:
        """Send the receipt text to the selected provider; return the raw plan text."""
        self.check_credentials(config)
        backend = self.backend_for(config.provider_id)
        req = backend.build_request(config, prompt_text)
        provider = config.provider_id.value

        LOG.info(f"Requesting meal plan from {backend.label} (model={backend.model})")
        try:
            r = self.s.post(
                req.url,
                params=req.params or None,
                headers=req.headers,
                json=req.json,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            LOG.error(f"{backend.label} request timed out after {self.timeout}s")
            raise ProviderUnavailable(f"request timed out after {self.timeout}s", provider=provider) from exc
        except requests.RequestException as exc:
            LOG.error(f"{backend.label} request failed: {exc}")
            raise ProviderUnavailable(f"request failed: {exc}", provider=provider) from exc

        if not 200 <= r.status_code < 300:
            detail = self._error_detail(backend, r)
            LOG.error(f"{backend.label} HTTP {r.status_code}: {detail}")
            raise ProviderUnavailable(detail, provider=provider, status_code=r.status_code)

        try:
            body = r.json()
        except ValueError as exc:
            LOG.error(f"{backend.label} returned a non-JSON body: {r.text[:200]!r}")
            raise ProviderUnavailable(f"Empty response from {backend.label}", provider=provider, status_code=r.status_code) from exc

        text = backend.parse_response(body)
        LOG.info(f"Received {len(text)} characters from {backend.label}")
        return text

    def close(self) -> None:
        self.s.close()
