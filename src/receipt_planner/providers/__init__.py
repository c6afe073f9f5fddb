"""Provider abstraction: shared prompt, per-provider backends, HTTP gateway."""

from .backends import ChatCompletionsBackend, GeminiBackend, ProviderBackend, ProviderRequest, build_backends
from .gateway import ProviderGateway
from .prompt import SYSTEM_INSTRUCTION, build_user_message

__all__ = [
    "ChatCompletionsBackend",
    "GeminiBackend",
    "ProviderBackend",
    "ProviderRequest",
    "build_backends",
    "ProviderGateway",
    "SYSTEM_INSTRUCTION",
    "build_user_message",
]
