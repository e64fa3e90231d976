from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from services.checkout.app.models.money import Money


class FulfillmentMode(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class Destination(BaseModel):
    address_id: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    label: str = ""

    @classmethod
    def from_address(cls, raw: dict[str, Any]) -> "Destination":
        """Build a destination from a saved-address payload.

        The address location arrives either as ``[lat, lng]`` or ``{latitude, longitude}``.
        """

        lat: float | None = None
        lng: float | None = None
        location = raw.get("location")
        if isinstance(location, (list, tuple)) and len(location) >= 2:
            lat, lng = float(location[0]), float(location[1])
        elif isinstance(location, dict) and location.get("latitude") is not None:
            lat = float(location["latitude"])
            lng = float(location.get("longitude") or 0)

        label = raw.get("address") or raw.get("title") or ""
        if isinstance(label, dict):
            label = " - ".join(
                str(label[k]) for k in ("address", "house", "floor") if label.get(k)
            )

        return cls(
            address_id=raw.get("id"),
            latitude=lat,
            longitude=lng,
            label=str(label),
        )

    @property
    def has_coordinates(self) -> bool:
        if self.latitude is None or self.longitude is None:
            return False
        return not (self.latitude == 0 and self.longitude == 0)


class FulfillmentSelection(BaseModel):
    mode: FulfillmentMode = FulfillmentMode.DELIVERY
    destination: Destination | None = None

    # Optional scheduled window, e.g. ("2026-10-20", "14:00").
    scheduled_date: date | None = None
    scheduled_time: str | None = Field(default=None, pattern=r"^\d{1,2}:\d{2}$")

    def is_complete(self) -> bool:
        if self.mode is FulfillmentMode.PICKUP:
            return True
        return self.destination is not None and self.destination.has_coordinates


class PriceBreakdown(BaseModel):
    """Authoritative price breakdown as recomputed by the backend."""

    subtotal: Money = Decimal("0.000")
    delivery_fee: Money = Decimal("0.000")
    service_fee: Money = Decimal("0.000")
    tax: Money = Decimal("0.000")
    discount: Money = Decimal("0.000")
    coupon_discount: Money = Decimal("0.000")
    grand_total: Money = Decimal("0.000")


class PriceContext(BaseModel):
    currency_id: int = 1
    rate: Decimal = Decimal("1")
