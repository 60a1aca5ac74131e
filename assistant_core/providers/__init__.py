"""
LLM provider adapters.

build_provider_chain() turns ASSISTANT_PROVIDER_CHAIN into adapter instances,
skipping providers that have no API key configured.
"""

from typing import List, Optional

from ..config import Settings, get_settings
from ..utils.logging import get_logger
from .anthropic_provider import AnthropicProvider
from .base import LLMProvider, ProviderRequest, ProviderResult, ToolCall
from .openai_provider import OpenAIProvider

logger = get_logger(__name__)


def build_provider(name: str, settings: Settings) -> LLMProvider:
    if name == "openai":
        return OpenAIProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            timeout_seconds=settings.assistant_request_timeout_seconds,
        )
    if name == "anthropic":
        return AnthropicProvider(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            timeout_seconds=settings.assistant_request_timeout_seconds,
        )
    raise ValueError(f"Unknown provider: {name}")


def build_provider_chain(settings: Optional[Settings] = None) -> List[LLMProvider]:
    settings = settings or get_settings()
    chain = []
    for name in settings.assistant_provider_chain:
        if not settings.provider_api_key(name):
            logger.warning("Provider skipped: no API key configured", provider=name)
            continue
        chain.append(build_provider(name, settings))
    return chain


__all__ = [
    "AnthropicProvider",
    "LLMProvider",
    "OpenAIProvider",
    "ProviderRequest",
    "ProviderResult",
    "ToolCall",
    "build_provider",
    "build_provider_chain",
]
