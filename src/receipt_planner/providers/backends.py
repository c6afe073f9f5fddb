"""Per-provider request envelopes and response extraction.

Each backend knows how to wrap the shared prompt for one provider and how to
pull the generated text back out of that provider's JSON. Everything else
(auth precondition, transport, error mapping) lives in the gateway.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from ..config import DEFAULT_ENDPOINTS
from ..domain.errors import ProviderUnavailable
from ..domain.models import ProviderConfig, ProviderId
from .prompt import SYSTEM_INSTRUCTION, build_combined_prompt, build_user_message


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    headers: Dict[str, str]
    json: Dict[str, Any]
    params: Dict[str, str] = field(default_factory=dict)


def _dig(body: Any, *path: Any) -> Any:
    """Follow keys/indices through nested JSON; None as soon as a step is missing."""
    node = body
    for step in path:
        if isinstance(step, int):
            if not isinstance(node, list) or len(node) <= step:
                return None
        elif not isinstance(node, dict):
            return None
        node = node[step] if isinstance(step, int) else node.get(step)
    return node


class ProviderBackend:
    provider_id: ProviderId
    label: str = "provider"

    def __init__(self, endpoint: str, model: str) -> None:
        self.endpoint = endpoint
        self.model = model

    def build_request(self, config: ProviderConfig, prompt_text: str) -> ProviderRequest:
        raise NotImplementedError

    def extract_text(self, body: Any) -> Optional[str]:
        raise NotImplementedError

    def parse_response(self, body: Any) -> str:
        text = self.extract_text(body)
        if not isinstance(text, str) or not text.strip():
            raise ProviderUnavailable(f"Empty response from {self.label}", provider=self.provider_id.value)
        return text

    @staticmethod
    def error_message(body: Any) -> Optional[str]:
        """Return the provider's own error text (``{"error": {"message": ...}}``) if present."""
        msg = _dig(body, "error", "message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
        return None


class GeminiBackend(ProviderBackend):
    provider_id = ProviderId.GEMINI
    label = "Gemini"

    def __init__(self, endpoint: str, model: str, *, default_key: Optional[str] = None) -> None:
        super().__init__(endpoint, model)
        self.default_key = default_key

    def resolve_key(self, config: ProviderConfig) -> Optional[str]:
        if config.has_key:
            return config.api_key.strip()
        return self.default_key or None

    def build_request(self, config: ProviderConfig, prompt_text: str) -> ProviderRequest:
        key = self.resolve_key(config)
        return ProviderRequest(
            url=self.endpoint.format(model=self.model),
            headers={"Content-Type": "application/json"},
            json={
                "contents": [{"parts": [{"text": build_combined_prompt(prompt_text)}]}],
                "generationConfig": {"responseMimeType": "application/json"},
            },
            params={"key": key} if key else {},
        )

    def extract_text(self, body: Any) -> Optional[str]:
        return _dig(body, "candidates", 0, "content", "parts", 0, "text")


class ChatCompletionsBackend(ProviderBackend):
    """OpenAI-compatible chat completions (OpenAI itself and DeepSeek)."""

    def __init__(self, provider_id: ProviderId, endpoint: str, model: str, *, label: str) -> None:
        super().__init__(endpoint, model)
        self.provider_id = provider_id
        self.label = label

    def build_request(self, config: ProviderConfig, prompt_text: str) -> ProviderRequest:
        return ProviderRequest(
            url=self.endpoint,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {(config.api_key or '').strip()}",
            },
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_INSTRUCTION},
                    {"role": "user", "content": build_user_message(prompt_text)},
                ],
                "response_format": {"type": "json_object"},
            },
        )

    def extract_text(self, body: Any) -> Optional[str]:
        return _dig(body, "choices", 0, "message", "content")


def build_backends(
    endpoints: Optional[Mapping[str, Tuple[str, str]]] = None,
    *,
    gemini_default_key: Optional[str] = None,
) -> Dict[ProviderId, ProviderBackend]:
    """Return one backend per provider, keyed by :class:`ProviderId`."""
    ep = dict(DEFAULT_ENDPOINTS)
    ep.update(endpoints or {})
    return {
        ProviderId.GEMINI: GeminiBackend(*ep["gemini"], default_key=gemini_default_key),
        ProviderId.DEEPSEEK: ChatCompletionsBackend(ProviderId.DEEPSEEK, *ep["deepseek"], label="DeepSeek"),
        ProviderId.OPENAI: ChatCompletionsBackend(ProviderId.OPENAI, *ep["openai"], label="OpenAI"),
    }
