from __future__ import annotations

from decimal import Decimal

from services.checkout.app.config import CheckoutConfig
from services.checkout.app.models.cart import Cart, CartLine
from services.checkout.app.models.checkout import FulfillmentMode, PriceBreakdown
from services.checkout.app.models.order import CalculateRequest, OrderPayload
from services.checkout.app.models.payment import (
    DIRECT_SETTLEMENT_TAGS,
    ChallengeVerification,
    Currency,
    GatewayResult,
    OrderCreationResult,
    OrderStatusSnapshot,
    PaymentMethod,
    PaymentOutcome,
    StoredInstrument,
)
from services.checkout.app.services.backend_base import (
    BackendError,
    BackendNotFoundError,
    BackendRejectedError,
)


def _default_cart() -> Cart:
    return Cart(
        id=1,
        shop_id=7,
        lines=[
            CartLine(id=11, stock_id=101, quantity=2, unit_price="5.000"),
            CartLine(id=12, stock_id=102, quantity=1, unit_price="2.500"),
        ],
        shop_min_amount="5.000",
    )


class MockMarketplaceBackend:
    """Deterministic in-memory backend for tests and local dev.

    Behaves like the real marketplace for the happy paths: the card gateway returns a
    redirect for a new card and a one-time-code URL for a stored card. ``fail_next`` lets a
    test inject one backend error for a named operation.
    """

    name = "MOCK"

    GATEWAY_BASE_URL = "https://gateway.mock"
    VALID_OTP = "482913"

    def __init__(self, card_gateway_tag: str = "thawani") -> None:
        self.card_gateway_tag = card_gateway_tag
        self.cart: Cart | None = _default_cart()
        self.delivery_fee = Decimal("1.500")
        self.coupons: dict[str, Decimal] = {"SAVE1": Decimal("1.000")}
        self.methods = [
            PaymentMethod(id=1, tag="cash"),
            PaymentMethod(id=2, tag="wallet"),
            PaymentMethod(id=3, tag=card_gateway_tag),
        ]
        self.instruments = [
            StoredInstrument(
                id="card_1",
                payment_method_id="pm_1",
                brand="visa",
                last_four="4242",
                exp_month=12,
                exp_year=2099,
                is_default=True,
            )
        ]
        self.currencies = [Currency(id=1, rate="1", is_default=True, symbol="OMR")]

        # When set, stored-card orders return an opaque token instead of a gateway URL.
        self.challenge_by_token = False
        self.challenge_tokens: dict[int, str] = {}

        self.calls: list[tuple[str, object]] = []
        self.fail_next: dict[str, BackendError] = {}
        self.orders: dict[int, OrderStatusSnapshot] = {}
        self._next_order_id = 1001

    @classmethod
    def from_env(cls) -> "MockMarketplaceBackend":
        return cls(card_gateway_tag=CheckoutConfig.from_env().card_gateway_tag)

    async def get_active_cart(self) -> Cart:
        self._record("get_active_cart", None)
        if self.cart is None:
            raise BackendNotFoundError("cart")
        return self.cart

    async def recalculate(self, cart_id: int, params: CalculateRequest) -> PriceBreakdown:
        self._record("recalculate", (cart_id, params))
        if self.cart is None or self.cart.id != cart_id:
            raise BackendNotFoundError("cart")

        subtotal = self.cart.local_subtotal
        fee = self.delivery_fee if params.delivery_type is FulfillmentMode.DELIVERY else Decimal(0)
        coupon = self.coupons.get(params.coupon or "", Decimal(0))
        return PriceBreakdown(
            subtotal=subtotal,
            delivery_fee=fee,
            coupon_discount=coupon,
            grand_total=max(Decimal(0), subtotal + fee - coupon),
        )

    async def check_coupon(self, shop_id: int, code: str) -> bool:
        self._record("check_coupon", (shop_id, code))
        return code in self.coupons

    async def list_payment_methods(self) -> list[PaymentMethod]:
        self._record("list_payment_methods", None)
        return list(self.methods)

    async def list_stored_instruments(self) -> list[StoredInstrument]:
        self._record("list_stored_instruments", None)
        return list(self.instruments)

    async def list_currencies(self) -> list[Currency]:
        self._record("list_currencies", None)
        return list(self.currencies)

    async def create_order(self, payload: OrderPayload) -> OrderCreationResult:
        self._record("create_order", payload)
        tag = self._method_tag(payload.payment_id)

        order_id = self._next_order_id
        self._next_order_id += 1
        self.orders[order_id] = OrderStatusSnapshot(
            order_id=order_id, status="new", transaction_status="progress"
        )

        if tag in DIRECT_SETTLEMENT_TAGS:
            return OrderCreationResult(order_id=order_id)

        if tag == self.card_gateway_tag and payload.payment_method_id:
            if self.challenge_by_token:
                token = f"otp_{order_id}"
                self.challenge_tokens[order_id] = token
                return OrderCreationResult(order_id=order_id, challenge_token=token)
            return OrderCreationResult(
                order_id=order_id,
                challenge_url=f"{self.GATEWAY_BASE_URL}/otp/{order_id}",
            )

        return OrderCreationResult(
            order_id=order_id,
            redirect_url=f"{self.GATEWAY_BASE_URL}/pay/{order_id}",
        )

    async def verify_challenge(
        self, order_id: int, code: str, token: str | None = None
    ) -> ChallengeVerification:
        self._record("verify_challenge", (order_id, code))
        issued = self.challenge_tokens.get(order_id)
        if issued is not None and token != issued:
            raise BackendRejectedError("Verification session expired", 422)
        if code != self.VALID_OTP:
            raise BackendRejectedError("Invalid verification code", 422)

        self.mark_paid(order_id)
        return ChallengeVerification(verified=True, message="Payment confirmed")

    async def get_order_status(self, order_id: int) -> OrderStatusSnapshot:
        self._record("get_order_status", order_id)
        snapshot = self.orders.get(order_id)
        if snapshot is None:
            raise BackendNotFoundError("order")
        return snapshot

    async def create_transaction(self, order_id: int, payment_id: int) -> int:
        self._record("create_transaction", (order_id, payment_id))
        return order_id * 10

    async def process_payment(self, tag: str, order_id: int) -> str | None:
        self._record("process_payment", (tag, order_id))
        return f"{self.GATEWAY_BASE_URL}/{tag}/{order_id}"

    async def process_gateway_result(
        self,
        *,
        order_id: int | None,
        session_id: str | None,
        payment_intent_id: str | None,
    ) -> GatewayResult:
        self._record("process_gateway_result", (order_id, session_id, payment_intent_id))
        snapshot = self.orders.get(order_id) if order_id is not None else None
        if snapshot is None:
            return GatewayResult(order_id=order_id, outcome=PaymentOutcome.PENDING)

        paid = snapshot.transaction_status == "paid"
        return GatewayResult(
            order_id=order_id,
            outcome=PaymentOutcome.SUCCESS if paid else PaymentOutcome.PENDING,
            transaction_id=f"txn_{order_id}" if paid else None,
        )

    def mark_paid(self, order_id: int) -> None:
        self._set_order(order_id, status="accepted", transaction_status="paid")

    def mark_rejected(self, order_id: int) -> None:
        self._set_order(order_id, status="new", transaction_status="rejected")

    def calls_to(self, operation: str) -> list[object]:
        return [args for name, args in self.calls if name == operation]

    def _set_order(self, order_id: int, *, status: str, transaction_status: str) -> None:
        self.orders[order_id] = OrderStatusSnapshot(
            order_id=order_id, status=status, transaction_status=transaction_status
        )

    def _method_tag(self, payment_id: int) -> str:
        for method in self.methods:
            if method.id == payment_id:
                return method.tag
        raise BackendRejectedError("The selected payment method is not available", 422)

    def _record(self, operation: str, args: object) -> None:
        self.calls.append((operation, args))
        exc = self.fail_next.pop(operation, None)
        if exc is not None:
            raise exc
