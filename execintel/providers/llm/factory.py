from __future__ import annotations

from execintel.core.config import get_settings
from execintel.core.errors import ProviderConfigError
from execintel.providers.llm.base import LLMProvider
from execintel.providers.llm.fake import FakeLLMProvider
from execintel.providers.llm.openai_chat import OpenAIChatProvider


def get_llm_provider() -> LLMProvider:
    settings = get_settings()
    provider = (settings.llm_provider or "fake").lower()

    if provider == "fake":
        return FakeLLMProvider()
    if provider == "openai":
        return OpenAIChatProvider()
    raise ProviderConfigError(f"Unsupported LLM provider: {settings.llm_provider}")
