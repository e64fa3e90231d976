from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel

from services.checkout.app.models.checkout import FulfillmentMode


class Location(BaseModel):
    latitude: float
    longitude: float


class CalculateRequest(BaseModel):
    delivery_type: FulfillmentMode
    coupon: str | None = None
    location: Location | None = None


class CallbackUrls(BaseModel):
    success_url: str
    failure_url: str
    callback_url: str


class OrderPayload(BaseModel):
    """Order-creation request body.

    Carries the price context (currency + rate), never the breakdown itself; the backend
    recomputes totals on its side.
    """

    cart_id: int
    shop_id: int
    currency_id: int
    rate: Decimal
    delivery_type: FulfillmentMode
    payment_id: int

    address_id: int | None = None
    location: Location | None = None
    delivery_date: date | None = None
    delivery_time: str | None = None
    note: str | None = None
    coupon: str | None = None
    phone: str | None = None

    # Stored-instrument reference for the card gateway.
    payment_method_id: str | None = None

    callbacks: CallbackUrls

    def to_wire(self) -> dict:
        body = self.model_dump(mode="json", exclude_none=True, exclude={"callbacks", "rate"})
        body["rate"] = float(self.rate)
        body.update(self.callbacks.model_dump())
        return body
