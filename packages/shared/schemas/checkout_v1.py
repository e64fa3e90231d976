"""Shared checkout payload schema (v1).

Web and mobile clients render the checkout phase and the payment result page from these.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class CheckoutPhaseV1(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    SUBMITTING = "SUBMITTING"
    SETTLED = "SETTLED"
    AWAITING_REDIRECT = "AWAITING_REDIRECT"
    AWAITING_CHALLENGE = "AWAITING_CHALLENGE"
    REJECTED = "REJECTED"


class CheckoutErrorV1(BaseModel):
    kind: str
    message: str
    # Machine code for validation errors, e.g. BELOW_MINIMUM_ORDER.
    code: str | None = None


class PaymentResultV1(BaseModel):
    version: str = "1"
    outcome: Literal["success", "failed", "pending", "cancelled"]

    order_id: int | None = None
    message: str = ""

    order_status: str | None = None
    transaction_status: str | None = None

    # Where the client should send the user next.
    next_route: Literal["confirmation", "order", "cart", "checkout"] = "order"
    cart_cleared: bool = False

    warnings: list[str] = Field(default_factory=list, max_length=8)
