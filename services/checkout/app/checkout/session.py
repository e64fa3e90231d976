from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date
from decimal import Decimal

from packages.shared.schemas.checkout_v1 import CheckoutPhaseV1
from services.checkout.app.checkout.cart_snapshot import CartSnapshot
from services.checkout.app.checkout.errors import (
    CheckoutError,
    CheckoutValidationError,
    Failure,
    Ok,
    Outcome,
    StaleCartError,
)
from services.checkout.app.checkout.payment_resolver import PaymentMethodResolver
from services.checkout.app.checkout.price_calculator import PriceCalculator
from services.checkout.app.checkout.settlement import Navigator, SettlementResumer
from services.checkout.app.checkout.state import CheckoutState
from services.checkout.app.checkout.submitter import (
    CheckoutRequest,
    OrderSubmitter,
    SubmissionResult,
)
from services.checkout.app.config import CheckoutConfig
from services.checkout.app.models.cart import Cart
from services.checkout.app.models.checkout import (
    Destination,
    FulfillmentMode,
    FulfillmentSelection,
    PriceBreakdown,
)
from services.checkout.app.models.payment import Currency, OtpChallenge, PaymentOutcome
from services.checkout.app.services.backend_base import MarketplaceBackend
from services.checkout.app.services.pending_store import SqlPendingOrderStore


class CheckoutSession:
    """One checkout flow, as seen by the UI layer.

    Wires the cart, pricing, payment, submission and settlement components together and
    reports back through three callbacks: ``on_settled(order_id)``, ``on_redirect_issued()``
    and ``on_rejected(error)``.
    """

    def __init__(
        self,
        backend: MarketplaceBackend,
        store: SqlPendingOrderStore,
        navigator: Navigator,
        *,
        config: CheckoutConfig | None = None,
        state: CheckoutState | None = None,
        currency: Currency | None = None,
        on_settled: Callable[[int], None] | None = None,
        on_redirect_issued: Callable[[], None] | None = None,
        on_rejected: Callable[[CheckoutError], None] | None = None,
    ) -> None:
        self.config = config or CheckoutConfig.from_env()
        self.state = state or CheckoutState()
        self.navigator = navigator

        self.cart_snapshot = CartSnapshot(backend, self.state)
        self.calculator = PriceCalculator(backend)
        self.payments = PaymentMethodResolver(backend, self.config.card_gateway_tag)
        self.settlement = SettlementResumer(backend, store, self.state, navigator)
        self.submitter = OrderSubmitter(
            backend, self.config, self.state, self.settlement, currency=currency
        )

        self.on_settled = on_settled
        self.on_redirect_issued = on_redirect_issued
        self.on_rejected = on_rejected

        self.fulfillment = FulfillmentSelection(destination=self.state.destination)
        self.phone: str | None = None
        self.note: str | None = None
        self.validation_error: CheckoutValidationError | None = None

        self._price_tasks: set[asyncio.Task] = set()
        self._unsubscribe = self.state.subscribe(self._destination_changed)

    # UI-facing state

    @property
    def phase(self) -> CheckoutPhaseV1:
        return self.submitter.phase

    @property
    def breakdown(self) -> PriceBreakdown | None:
        return self.calculator.breakdown

    @property
    def last_error(self) -> CheckoutError | None:
        return self.submitter.error or self.calculator.last_error

    @property
    def can_submit(self) -> bool:
        return not self.submitter.busy and self.phase is not CheckoutPhaseV1.SETTLED

    @property
    def open_challenge(self) -> OtpChallenge | None:
        return self.settlement.challenge

    @property
    def display_subtotal(self) -> Decimal | None:
        if self.breakdown is not None:
            return self.breakdown.subtotal
        cart = self.state.cart
        return self.calculator.optimistic_subtotal(cart) if cart else None

    # Lifecycle

    async def start(self) -> Outcome[Cart]:
        self.submitter.reset()
        fetched = await self.cart_snapshot.fetch_active()
        if isinstance(fetched, Failure):
            if isinstance(fetched.error, StaleCartError):
                self.navigator.route_to_cart()
            return fetched

        await self.payments.load()
        await self.submitter.resolve_price_context()
        await self.refresh_price()
        return fetched

    def close(self) -> None:
        self._unsubscribe()
        for task in self._price_tasks:
            task.cancel()

    # Inputs

    async def set_fulfillment_mode(self, mode: FulfillmentMode) -> None:
        self.fulfillment = self.fulfillment.model_copy(update={"mode": mode})
        await self.refresh_price()

    async def apply_coupon(self, code: str) -> Outcome[str]:
        cart = self.state.cart
        if cart is None:
            return Failure(StaleCartError())

        applied = await self.calculator.apply_coupon(cart.shop_id, code)
        if isinstance(applied, Ok):
            await self.refresh_price()
        return applied

    async def remove_coupon(self) -> None:
        self.calculator.remove_coupon()
        await self.refresh_price()

    async def refresh_price(self) -> Outcome[PriceBreakdown] | None:
        cart = self.state.cart
        if cart is None:
            return None

        result = await self.calculator.recalculate(cart.id, self.fulfillment, self.calculator.coupon)
        if isinstance(result, Failure) and isinstance(result.error, StaleCartError):
            self.state.clear_cart()
            self.navigator.route_to_cart()
        return result

    async def wait_for_price(self) -> None:
        if self._price_tasks:
            await asyncio.gather(*list(self._price_tasks))

    def _destination_changed(self, destination: Destination | None) -> None:
        self.fulfillment = self.fulfillment.model_copy(update={"destination": destination})
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        task = loop.create_task(self.refresh_price())
        self._price_tasks.add(task)
        task.add_done_callback(self._price_tasks.discard)

    # Submission

    async def submit(self, today: date | None = None) -> Outcome[SubmissionResult]:
        selection = self.payments.selection
        request = CheckoutRequest(
            cart=self.state.cart,
            fulfillment=self.fulfillment,
            payment=selection,
            instrument=self.payments.find_instrument(selection.instrument_id),
            phone=self.phone,
            breakdown=self.breakdown,
            coupon=self.calculator.coupon,
            note=self.note,
        )

        result = await self.submitter.submit(request, today)
        if isinstance(result, Failure) and isinstance(result.error, CheckoutValidationError):
            self.validation_error = result.error
            return result

        self.validation_error = None
        if isinstance(result, Failure):
            if self.on_rejected is not None:
                self.on_rejected(result.error)
            return result

        submitted = result.value
        if submitted.phase is CheckoutPhaseV1.SETTLED and self.on_settled is not None:
            self.on_settled(submitted.order_id)
        elif submitted.phase is CheckoutPhaseV1.AWAITING_REDIRECT and self.on_redirect_issued:
            self.on_redirect_issued()
        return result

    async def submit_challenge_code(self, code: str) -> Outcome[PaymentOutcome]:
        challenge = self.settlement.challenge
        if challenge is None:
            return Failure(CheckoutError("There is no verification in progress."))

        result = await self.settlement.submit_challenge(challenge, code)
        if isinstance(result, Failure):
            return result

        if result.value is PaymentOutcome.SUCCESS:
            self.submitter.challenge_finished(CheckoutPhaseV1.SETTLED)
            if self.on_settled is not None:
                self.on_settled(challenge.order_id)
        else:
            self.submitter.challenge_finished(CheckoutPhaseV1.AWAITING_REDIRECT)
            if self.on_redirect_issued is not None:
                self.on_redirect_issued()
        return result

    def cancel_challenge(self) -> None:
        challenge = self.settlement.challenge
        if challenge is None:
            return
        self.settlement.cancel_challenge(challenge)
        self.submitter.challenge_finished(CheckoutPhaseV1.IDLE)
