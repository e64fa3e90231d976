from __future__ import annotations

import os

from services.checkout.app.services.backend_base import MarketplaceBackend
from services.checkout.app.services.backend_mock import MockMarketplaceBackend

_MOCK: MockMarketplaceBackend | None = None


def get_backend() -> MarketplaceBackend:
    """Select a backend based on env vars.

    Defaults to the mock backend so tests and local dev are deterministic unless explicitly
    configured otherwise. The mock is shared process-wide so orders created during checkout
    are still known when the gateway redirects back.
    """

    global _MOCK

    mode = os.getenv("CHECKOUT_BACKEND", "mock").strip().lower()

    if mode == "mock":
        if _MOCK is None:
            _MOCK = MockMarketplaceBackend.from_env()
        return _MOCK

    if mode == "http":
        from services.checkout.app.services.backend_http import HttpMarketplaceBackend

        return HttpMarketplaceBackend.from_env()

    raise ValueError(f"Unknown CHECKOUT_BACKEND={mode!r}. Expected mock or http.")
