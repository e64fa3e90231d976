from __future__ import annotations

from dataclasses import dataclass
from datetime import date

import structlog

from packages.shared.schemas.checkout_v1 import CheckoutPhaseV1
from services.checkout.app.checkout.errors import (
    BelowMinimumOrderError,
    CheckoutError,
    CheckoutValidationError,
    ContractViolationError,
    Failure,
    Ok,
    Outcome,
    SubmissionError,
    ValidationCode,
)
from services.checkout.app.checkout.settlement import SettlementResumer
from services.checkout.app.checkout.state import CheckoutState
from services.checkout.app.config import CheckoutConfig
from services.checkout.app.models.cart import Cart
from services.checkout.app.models.checkout import (
    FulfillmentMode,
    FulfillmentSelection,
    PriceBreakdown,
    PriceContext,
)
from services.checkout.app.models.order import Location, OrderPayload
from services.checkout.app.models.payment import (
    DIRECT_SETTLEMENT_TAGS,
    Currency,
    OrderCreationResult,
    OtpChallenge,
    PaymentSelection,
    StoredInstrument,
)
from services.checkout.app.services.backend_base import (
    BackendError,
    BackendRejectedError,
    MarketplaceBackend,
)

logger = structlog.get_logger(__name__)

# Phases during which another submit must be refused.
BUSY_PHASES = frozenset(
    {
        CheckoutPhaseV1.SUBMITTING,
        CheckoutPhaseV1.AWAITING_REDIRECT,
        CheckoutPhaseV1.AWAITING_CHALLENGE,
    }
)


@dataclass(slots=True)
class CheckoutRequest:
    cart: Cart | None
    fulfillment: FulfillmentSelection
    payment: PaymentSelection
    instrument: StoredInstrument | None = None
    phone: str | None = None
    breakdown: PriceBreakdown | None = None
    coupon: str | None = None
    note: str | None = None


@dataclass(slots=True)
class SubmissionResult:
    phase: CheckoutPhaseV1
    order_id: int
    redirect_url: str | None = None
    challenge: OtpChallenge | None = None


class OrderSubmitter:
    """Validates a checkout, creates the order and picks the settlement branch.

    Phases: IDLE -> VALIDATING -> SUBMITTING -> one of SETTLED, AWAITING_REDIRECT,
    AWAITING_CHALLENGE or REJECTED. A failed validation or a failed order-creation call
    returns to IDLE. Nothing is retried automatically.
    """

    def __init__(
        self,
        backend: MarketplaceBackend,
        config: CheckoutConfig,
        state: CheckoutState,
        settlement: SettlementResumer,
        *,
        currency: Currency | None = None,
    ) -> None:
        self.backend = backend
        self.config = config
        self.state = state
        self.settlement = settlement
        self.phase = CheckoutPhaseV1.IDLE
        self.error: CheckoutError | None = None
        self.price_context: PriceContext | None = (
            PriceContext(currency_id=currency.id, rate=currency.rate) if currency else None
        )

    @property
    def busy(self) -> bool:
        return self.phase in BUSY_PHASES

    def _transition(self, phase: CheckoutPhaseV1, **kw: object) -> None:
        logger.info("checkout_phase", phase=phase.value, previous=self.phase.value, **kw)
        self.phase = phase

    def validate(
        self, request: CheckoutRequest, today: date | None = None
    ) -> CheckoutValidationError | None:
        cart = request.cart
        if cart is None or not cart.lines:
            return CheckoutValidationError(ValidationCode.CART_MISSING, "Your cart is empty.")

        if not request.fulfillment.is_complete():
            return CheckoutValidationError(
                ValidationCode.FULFILLMENT_INCOMPLETE, "Choose a delivery address with a location."
            )

        payment = request.payment
        if payment.method is None:
            return CheckoutValidationError(
                ValidationCode.PAYMENT_METHOD_MISSING, "Choose a payment method."
            )

        if payment.method.tag == self.config.card_gateway_tag and payment.uses_stored_instrument:
            instrument = request.instrument
            if not payment.instrument_id or instrument is None or instrument.id != payment.instrument_id:
                return CheckoutValidationError(
                    ValidationCode.INSTRUMENT_MISSING, "Choose a saved card or pay with a new card."
                )
            if instrument.is_expired(today):
                return CheckoutValidationError(
                    ValidationCode.INSTRUMENT_EXPIRED, f"{instrument.masked} has expired."
                )

        subtotal = request.breakdown.subtotal if request.breakdown else cart.local_subtotal
        if cart.shop_min_amount > 0 and subtotal < cart.shop_min_amount:
            return BelowMinimumOrderError(cart.shop_min_amount, subtotal)

        if not (request.phone or "").strip():
            return CheckoutValidationError(
                ValidationCode.PHONE_MISSING, "Add a contact phone number."
            )

        return None

    async def resolve_price_context(self) -> PriceContext:
        if self.price_context is not None:
            return self.price_context

        try:
            currencies = await self.backend.list_currencies()
        except BackendError as e:
            logger.warning("currency_lookup_failed", error=str(e))
            currencies = []

        chosen = next((c for c in currencies if c.is_default), None)
        if chosen is None and currencies:
            chosen = currencies[0]

        if chosen is None:
            logger.warning("price_context_defaulted")
            self.price_context = PriceContext()
        else:
            self.price_context = PriceContext(currency_id=chosen.id, rate=chosen.rate)
        return self.price_context

    async def submit(
        self, request: CheckoutRequest, today: date | None = None
    ) -> Outcome[SubmissionResult]:
        if self.busy:
            return Failure(
                CheckoutValidationError(
                    ValidationCode.SUBMISSION_IN_PROGRESS, "Your order is already being placed."
                )
            )

        self.error = None
        self._transition(CheckoutPhaseV1.VALIDATING)
        invalid = self.validate(request, today)
        if invalid is not None:
            self.error = invalid
            self._transition(CheckoutPhaseV1.IDLE, code=invalid.code.value)
            return Failure(invalid)

        self._transition(CheckoutPhaseV1.SUBMITTING)
        try:
            return await self._submit(request)
        except Exception:
            # Faults propagate, but the submit action must not stay locked.
            if self.phase in (CheckoutPhaseV1.SUBMITTING, CheckoutPhaseV1.AWAITING_REDIRECT):
                self._transition(CheckoutPhaseV1.IDLE)
            raise

    async def _submit(self, request: CheckoutRequest) -> Outcome[SubmissionResult]:
        assert request.cart is not None and request.payment.method is not None
        method = request.payment.method

        context = await self.resolve_price_context()
        payload = self._payload(request, context)

        try:
            created = await self.backend.create_order(payload)
        except BackendError as e:
            message = e.message if isinstance(e, BackendRejectedError) else None
            self.error = SubmissionError(message)
            logger.warning("order_creation_failed", method_tag=method.tag, error=str(e))
            self._transition(CheckoutPhaseV1.IDLE)
            return Failure(self.error)

        log = logger.bind(order_id=created.order_id, method_tag=method.tag)
        log.info("order_created", status=created.status)
        return await self._settle(request, created)

    async def _settle(
        self, request: CheckoutRequest, created: OrderCreationResult
    ) -> Outcome[SubmissionResult]:
        method = request.payment.method
        assert method is not None
        order_id = created.order_id
        gateway = method.tag == self.config.card_gateway_tag

        if method.tag in DIRECT_SETTLEMENT_TAGS:
            self.state.clear_cart()
            self._transition(CheckoutPhaseV1.SETTLED, order_id=order_id)
            self.settlement.show_confirmation(order_id)
            return Ok(SubmissionResult(phase=self.phase, order_id=order_id))

        if (
            gateway
            and request.payment.uses_stored_instrument
            and created.has_challenge
            and not created.redirect_url
        ):
            challenge = self.settlement.open_challenge(created)
            self._transition(CheckoutPhaseV1.AWAITING_CHALLENGE, order_id=order_id)
            return Ok(SubmissionResult(phase=self.phase, order_id=order_id, challenge=challenge))

        redirect_url = created.redirect_url
        if redirect_url is None and not gateway:
            redirect_url = await self._legacy_payment_url(order_id, method.id, method.tag)
            if isinstance(redirect_url, Failure):
                return redirect_url

        if redirect_url:
            self._transition(CheckoutPhaseV1.AWAITING_REDIRECT, order_id=order_id)
            self.settlement.begin_redirect(order_id, redirect_url)
            return Ok(
                SubmissionResult(phase=self.phase, order_id=order_id, redirect_url=redirect_url)
            )

        return self._reject(ContractViolationError(order_id))

    async def _legacy_payment_url(
        self, order_id: int, payment_id: int, tag: str
    ) -> str | None | Failure:
        try:
            await self.backend.create_transaction(order_id, payment_id)
            return await self.backend.process_payment(tag, order_id)
        except BackendError as e:
            logger.warning("payment_processing_failed", order_id=order_id, method_tag=tag, error=str(e))
            message = e.message if isinstance(e, BackendRejectedError) else None
            return self._reject(SubmissionError(message))

    def _reject(self, error: CheckoutError) -> Failure:
        self.error = error
        self._transition(CheckoutPhaseV1.REJECTED, kind=error.kind)
        return Failure(error)

    def _payload(self, request: CheckoutRequest, context: PriceContext) -> OrderPayload:
        cart = request.cart
        payment = request.payment
        fulfillment = request.fulfillment
        assert cart is not None and payment.method is not None

        destination = fulfillment.destination if fulfillment.mode is FulfillmentMode.DELIVERY else None
        location = None
        if destination is not None and destination.has_coordinates:
            location = Location(latitude=destination.latitude, longitude=destination.longitude)

        instrument_ref = None
        if payment.uses_stored_instrument and request.instrument is not None:
            instrument_ref = request.instrument.payment_method_id or request.instrument.id

        return OrderPayload(
            cart_id=cart.id,
            shop_id=cart.shop_id,
            currency_id=context.currency_id,
            rate=context.rate,
            delivery_type=fulfillment.mode,
            payment_id=payment.method.id,
            address_id=destination.address_id if destination else None,
            location=location,
            delivery_date=fulfillment.scheduled_date,
            delivery_time=fulfillment.scheduled_time,
            note=(request.note or "").strip() or None,
            coupon=request.coupon,
            phone=(request.phone or "").strip(),
            payment_method_id=instrument_ref,
            callbacks=self.config.callback_urls(),
        )

    def challenge_finished(self, phase: CheckoutPhaseV1) -> None:
        if self.phase is CheckoutPhaseV1.AWAITING_CHALLENGE:
            self._transition(phase)

    def reset(self) -> None:
        # A fresh page load starts a new attempt.
        if self.phase is not CheckoutPhaseV1.IDLE:
            self._transition(CheckoutPhaseV1.IDLE)
        self.error = None
