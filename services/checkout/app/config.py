from __future__ import annotations

import os
from dataclasses import dataclass

from services.checkout.app.models.order import CallbackUrls


@dataclass(frozen=True, slots=True)
class CheckoutConfig:
    """Checkout settings.

    Env vars:
    - CHECKOUT_API_BASE_URL (default: https://uatapi.maksab.om)
    - CHECKOUT_API_TOKEN (default: empty, no Authorization header)
    - CHECKOUT_LOCALE (default: ar)
    - CHECKOUT_CURRENCY_ID (default: empty)
    - CHECKOUT_HTTP_TIMEOUT_S (default: 30)
    - CHECKOUT_PUBLIC_BASE_URL (default: http://localhost:8000)
    - CHECKOUT_CARD_GATEWAY_TAG (default: thawani)
    - CHECKOUT_PENDING_ORDER_TTL_S (default: 3600)
    """

    api_base_url: str
    api_token: str
    locale: str
    currency_id: str
    http_timeout_s: float
    public_base_url: str
    card_gateway_tag: str
    pending_order_ttl_s: int

    @classmethod
    def from_env(cls) -> "CheckoutConfig":
        return cls(
            api_base_url=os.getenv("CHECKOUT_API_BASE_URL", "https://uatapi.maksab.om").rstrip("/"),
            api_token=os.getenv("CHECKOUT_API_TOKEN", "").strip(),
            locale=os.getenv("CHECKOUT_LOCALE", "ar").strip() or "ar",
            currency_id=os.getenv("CHECKOUT_CURRENCY_ID", "").strip(),
            http_timeout_s=float(os.getenv("CHECKOUT_HTTP_TIMEOUT_S", "30")),
            public_base_url=os.getenv("CHECKOUT_PUBLIC_BASE_URL", "http://localhost:8000").rstrip(
                "/"
            ),
            card_gateway_tag=os.getenv("CHECKOUT_CARD_GATEWAY_TAG", "thawani").strip().lower(),
            pending_order_ttl_s=int(os.getenv("CHECKOUT_PENDING_ORDER_TTL_S", "3600")),
        )

    def callback_urls(self) -> CallbackUrls:
        return CallbackUrls(
            success_url=f"{self.public_base_url}/api/payment/success",
            failure_url=f"{self.public_base_url}/api/payment/failed",
            callback_url=f"{self.public_base_url}/api/payment/callback",
        )


def parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}
