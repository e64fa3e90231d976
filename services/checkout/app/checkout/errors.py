"""Checkout error taxonomy and the result type returned by network-facing operations.

Expected, user-recoverable failures are returned as ``Failure(error)``. Anything that is
not a ``CheckoutError`` is a fault and propagates to the caller untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar, Union

from services.checkout.app.models.money import format_money

T = TypeVar("T")


class CheckoutError(Exception):
    """Base class for checkout failures surfaced to the UI layer."""

    kind = "checkout"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationCode(str, Enum):
    CART_MISSING = "CART_MISSING"
    FULFILLMENT_INCOMPLETE = "FULFILLMENT_INCOMPLETE"
    PAYMENT_METHOD_MISSING = "PAYMENT_METHOD_MISSING"
    INSTRUMENT_MISSING = "INSTRUMENT_MISSING"
    INSTRUMENT_EXPIRED = "INSTRUMENT_EXPIRED"
    BELOW_MINIMUM_ORDER = "BELOW_MINIMUM_ORDER"
    PHONE_MISSING = "PHONE_MISSING"
    SUBMISSION_IN_PROGRESS = "SUBMISSION_IN_PROGRESS"


class CheckoutValidationError(CheckoutError):
    kind = "validation"

    def __init__(self, code: ValidationCode, message: str) -> None:
        super().__init__(message)
        self.code = code


class BelowMinimumOrderError(CheckoutValidationError):
    def __init__(self, minimum_amount: Decimal, subtotal: Decimal) -> None:
        super().__init__(
            ValidationCode.BELOW_MINIMUM_ORDER,
            f"Minimum order amount is {format_money(minimum_amount)} "
            f"(current subtotal {format_money(subtotal)})",
        )
        self.minimum_amount = minimum_amount
        self.subtotal = subtotal


class StaleCartError(CheckoutError):
    kind = "stale_cart"

    def __init__(self) -> None:
        super().__init__("Your cart is no longer available. Please rebuild it.")


class CalculationError(CheckoutError):
    kind = "calculation"


class CouponRejectedError(CheckoutError):
    kind = "coupon"

    def __init__(self, code: str, message: str | None = None) -> None:
        super().__init__(message or f"Coupon {code!r} is not valid")
        self.code = code


class SubmissionError(CheckoutError):
    kind = "submission"

    DEFAULT_MESSAGE = "We could not place your order. Please try again."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.DEFAULT_MESSAGE)


class ContractViolationError(CheckoutError):
    kind = "contract_violation"

    def __init__(self, order_id: int | None) -> None:
        super().__init__(
            f"Order {order_id} was created but no settlement path was returned"
            if order_id is not None
            else "No settlement path was returned"
        )
        self.order_id = order_id


class ChallengeError(CheckoutError):
    kind = "challenge"


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Failure:
    error: CheckoutError

    @property
    def ok(self) -> bool:
        return False


Outcome = Union[Ok[T], Failure]
