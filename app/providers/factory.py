# app/providers/factory.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

import httpx

from app.lightning.ln_address import LightningAddressResolver
from app.providers.base import PayoutProvider
from app.providers.http import HttpClient
from app.providers.mock import MockPayoutProvider
from app.providers.opennode import OpenNodeClient, OpenNodePayoutProvider
from settings import Settings, opennode_api_key, opennode_base_url, opennode_callback_url

ProviderMode = Literal["opennode", "mock"]


@dataclass(frozen=True)
class ProviderSelection:
    mode: ProviderMode
    api_key: str
    base_url: str
    callback_url: Optional[str]
    http_timeout_s: float = 20.0


def resolve_payout_provider(s: Settings) -> ProviderSelection:
    """Blank OPENNODE_API_KEY => mock. Base URL defaults and loses its trailing slash."""
    api_key = opennode_api_key(s)
    return ProviderSelection(
        mode="opennode" if api_key else "mock",
        api_key=api_key,
        base_url=opennode_base_url(s),
        callback_url=opennode_callback_url(s) or None,
        http_timeout_s=float(s.HTTP_TIMEOUT_S),
    )


def build_provider(
    selection: ProviderSelection,
    *,
    transport: httpx.BaseTransport | None = None,
) -> PayoutProvider:
    if selection.mode == "mock":
        return MockPayoutProvider()

    http = HttpClient(timeout_s=selection.http_timeout_s, transport=transport)
    return OpenNodePayoutProvider(
        client=OpenNodeClient(api_key=selection.api_key, base_url=selection.base_url, http=http),
        resolver=LightningAddressResolver(http),
        callback_url=selection.callback_url,
    )
