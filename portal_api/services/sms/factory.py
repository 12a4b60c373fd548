from __future__ import annotations
from typing import Optional

from ...config import get_settings
from .textbelt_provider import TextbeltProvider

_provider_singleton: Optional[TextbeltProvider] = None


def get_sms_provider() -> TextbeltProvider:
    global _provider_singleton
    if _provider_singleton is None:
        settings = get_settings()
        _provider_singleton = TextbeltProvider(
            api_key=settings.TEXTBELT_API_KEY,
            base_url=settings.TEXTBELT_BASE_URL,
        )
    return _provider_singleton


def set_sms_provider(provider: Optional[TextbeltProvider]) -> None:
    global _provider_singleton
    _provider_singleton = provider
