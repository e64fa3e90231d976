from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from pydantic import BeforeValidator, Field

# Three minor-unit digits (baisa).
MONEY_QUANTUM = Decimal("0.001")


def to_money(value: object) -> Decimal:
    if value is None or value == "":
        return Decimal("0.000")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal) -> str:
    return f"{amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP):.3f}"


Money = Annotated[Decimal, BeforeValidator(to_money), Field(ge=0)]
