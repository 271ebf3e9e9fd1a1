# fleetsync/providers/registry.py
"""Registered provider adapters, keyed by the provider name stored on connections."""
from __future__ import annotations

import requests

from ..config import Settings
from ..exceptions import ProviderError
from .base import ProviderAdapter
from .motive import MotiveAdapter
from .samsara import SamsaraAdapter

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    MotiveAdapter.name: MotiveAdapter,
    SamsaraAdapter.name: SamsaraAdapter,
}


def get_adapter_class(provider: str) -> type[ProviderAdapter]:
    try:
        return ADAPTERS[provider]
    except KeyError:
        raise ProviderError(f"Unsupported provider: {provider!r}", provider=provider) from None


def build_adapter(
    provider: str,
    settings: Settings,
    sandbox: bool = False,
    session: requests.Session | None = None,
) -> ProviderAdapter:
    adapter_cls = get_adapter_class(provider)
    return adapter_cls(
        settings.provider_base_url(provider, sandbox),
        session=session,
        timeout=settings.provider_timeout_seconds,
        max_retries=settings.provider_max_retries,
    )
