from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from services.checkout.app.models.money import Money, to_money


class CartAddon(BaseModel):
    stock_id: int
    quantity: int = Field(..., ge=1)
    unit_price: Money = Decimal("0.000")


class CartLine(BaseModel):
    id: int
    stock_id: int | None = None
    quantity: int = Field(..., ge=1)
    unit_price: Money
    addons: list[CartAddon] = Field(default_factory=list)

    @property
    def line_total(self) -> Decimal:
        total = self.unit_price * self.quantity
        for addon in self.addons:
            total += addon.unit_price * addon.quantity
        return to_money(total)


class Cart(BaseModel):
    id: int
    shop_id: int
    lines: list[CartLine] = Field(default_factory=list)

    # Shop minimum order amount; 0 when the shop sets none.
    shop_min_amount: Money = Decimal("0.000")
    server_total: Money | None = None

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def local_subtotal(self) -> Decimal:
        return to_money(sum((line.line_total for line in self.lines), Decimal("0")))
