from __future__ import annotations

from typing import Protocol

import httpx
import structlog

from packages.shared.schemas.checkout_v1 import PaymentResultV1
from services.checkout.app.checkout.errors import ChallengeError, Failure, Ok, Outcome
from services.checkout.app.checkout.state import CheckoutState
from services.checkout.app.models.payment import (
    ChallengeChannel,
    OrderCreationResult,
    OrderStatusSnapshot,
    OtpChallenge,
    PaymentOutcome,
)
from services.checkout.app.services.backend_base import (
    BackendError,
    BackendRejectedError,
    MarketplaceBackend,
)
from services.checkout.app.services.pending_store import SqlPendingOrderStore

logger = structlog.get_logger(__name__)

OTP_PARAM = "otp"

_CANCELLED = {"canceled", "cancelled"}


class Navigator(Protocol):
    """The UI layer's navigation hooks."""

    def navigate(self, url: str) -> None: ...

    def show_confirmation(self, order_id: int) -> None: ...

    def route_to_cart(self) -> None: ...


def outcome_for(snapshot: OrderStatusSnapshot) -> PaymentOutcome:
    transaction = (snapshot.transaction_status or "").lower()
    if transaction == "paid":
        return PaymentOutcome.SUCCESS
    if transaction in _CANCELLED or transaction == "rejected":
        return PaymentOutcome.FAILED
    if snapshot.status.lower() in _CANCELLED:
        return PaymentOutcome.CANCELLED
    return PaymentOutcome.PENDING


_MESSAGES = {
    PaymentOutcome.SUCCESS: "Payment completed. Your order has been placed.",
    PaymentOutcome.FAILED: "Payment failed. Please try again or choose another payment method.",
    PaymentOutcome.PENDING: "Payment is still being processed.",
    PaymentOutcome.CANCELLED: "The order was cancelled.",
}

PROCESSING_ERROR_MESSAGE = "We could not confirm your payment. Please check your orders."
ORDER_NOT_FOUND_MESSAGE = "We could not find the order for this payment."


class SettlementResumer:
    """Finishes orders that do not settle synchronously.

    Two flows: the gateway redirect, which leaves the page and comes back through one of
    the return routes, and the one-time-code challenge, which stays on the page.
    """

    def __init__(
        self,
        backend: MarketplaceBackend,
        store: SqlPendingOrderStore,
        state: CheckoutState,
        navigator: Navigator | None = None,
    ) -> None:
        self.backend = backend
        self.store = store
        self.state = state
        self.navigator = navigator
        self.challenge: OtpChallenge | None = None

    def _navigator(self) -> Navigator:
        if self.navigator is None:
            raise RuntimeError("SettlementResumer has no navigator attached")
        return self.navigator

    def show_confirmation(self, order_id: int) -> None:
        self._navigator().show_confirmation(order_id)

    # Redirect

    def begin_redirect(self, order_id: int, url: str) -> None:
        navigator = self._navigator()
        # The marker must be durable before the page goes away.
        self.store.set(order_id)
        logger.info("gateway_redirect_issued", order_id=order_id)
        navigator.navigate(url)

    async def reconcile(
        self,
        *,
        order_id: int | None = None,
        status_hint: str | None = None,
        session_id: str | None = None,
        payment_intent_id: str | None = None,
        error: str | None = None,
    ) -> PaymentResultV1:
        """Work out what happened to the order once the gateway hands control back.

        The gateway's own status is only a hint; the backend decides.
        """

        marker = self.store.take()
        if marker is not None and order_id is not None and marker.order_id != order_id:
            logger.warning("pending_order_mismatch", url_order_id=order_id, marker_order_id=marker.order_id)
        if order_id is None and marker is not None:
            order_id = marker.order_id

        log = logger.bind(order_id=order_id, status_hint=status_hint)
        if error:
            log = log.bind(gateway_error=error)

        if order_id is None and not (session_id or payment_intent_id):
            log.info("payment_reconciled", outcome=PaymentOutcome.FAILED.value, reason="no_order")
            return self._result(PaymentOutcome.FAILED, None, message=ORDER_NOT_FOUND_MESSAGE)

        snapshot: OrderStatusSnapshot | None = None
        if order_id is not None:
            try:
                snapshot = await self.backend.get_order_status(order_id)
            except BackendError as e:
                log.warning("order_status_failed", error=str(e))

        if snapshot is not None:
            outcome = outcome_for(snapshot)
            log.info("payment_reconciled", outcome=outcome.value, source="order_status")
            return self._result(outcome, order_id, snapshot=snapshot)

        try:
            gateway = await self.backend.process_gateway_result(
                order_id=order_id, session_id=session_id, payment_intent_id=payment_intent_id
            )
        except BackendError as e:
            log.warning("gateway_result_failed", error=str(e))
            log.info("payment_reconciled", outcome=PaymentOutcome.FAILED.value, source="none")
            return self._result(PaymentOutcome.FAILED, order_id, message=PROCESSING_ERROR_MESSAGE)

        order_id = gateway.order_id if gateway.order_id is not None else order_id
        log.info("payment_reconciled", outcome=gateway.outcome.value, source="gateway_result")
        return self._result(gateway.outcome, order_id, message=gateway.message or None)

    def _result(
        self,
        outcome: PaymentOutcome,
        order_id: int | None,
        *,
        snapshot: OrderStatusSnapshot | None = None,
        message: str | None = None,
    ) -> PaymentResultV1:
        cleared = False
        if outcome is PaymentOutcome.SUCCESS:
            self.state.clear_cart()
            cleared = True
            next_route = "confirmation"
        elif outcome is PaymentOutcome.PENDING:
            next_route = "order"
        else:
            next_route = "checkout" if order_id is not None else "cart"

        return PaymentResultV1(
            outcome=outcome.value,
            order_id=order_id,
            message=message or _MESSAGES[outcome],
            order_status=snapshot.status if snapshot else None,
            transaction_status=snapshot.transaction_status if snapshot else None,
            next_route=next_route,
            cart_cleared=cleared,
        )

    # Challenge

    def open_challenge(self, result: OrderCreationResult) -> OtpChallenge:
        if result.challenge_url:
            challenge = OtpChallenge(
                order_id=result.order_id,
                channel=ChallengeChannel.GATEWAY_URL,
                verification_url=result.challenge_url,
            )
        else:
            challenge = OtpChallenge(
                order_id=result.order_id,
                channel=ChallengeChannel.BACKEND,
                token=result.challenge_token,
            )

        self.challenge = challenge
        logger.info("challenge_opened", order_id=result.order_id, channel=challenge.channel.value)
        return challenge

    async def submit_challenge(self, challenge: OtpChallenge, code: str) -> Outcome[PaymentOutcome]:
        """Send one user-entered code through the challenge's single verification channel.

        ``Ok(SUCCESS)`` when the backend verified it, ``Ok(PENDING)`` when the code was
        forwarded to the gateway page.
        """

        if not challenge.active:
            return Failure(ChallengeError("This verification is no longer active."))

        code = code.strip()
        challenge.code = code
        if not code:
            return self._challenge_failed(challenge, "Enter the verification code.")

        if challenge.channel is ChallengeChannel.GATEWAY_URL:
            assert challenge.verification_url is not None
            navigator = self._navigator()
            # Replaces any code already on the URL.
            url = str(httpx.URL(challenge.verification_url).copy_set_param(OTP_PARAM, code))
            self.store.set(challenge.order_id)
            self._close(challenge)
            logger.info("challenge_forwarded", order_id=challenge.order_id)
            navigator.navigate(url)
            return Ok(PaymentOutcome.PENDING)

        try:
            verification = await self.backend.verify_challenge(
                challenge.order_id, code, challenge.token
            )
        except BackendRejectedError as e:
            return self._challenge_failed(challenge, e.message or "The verification code was not accepted.")
        except BackendError as e:
            logger.warning("challenge_verify_failed", order_id=challenge.order_id, error=str(e))
            return self._challenge_failed(challenge, "Could not verify the code. Please try again.")

        if not verification.verified:
            return self._challenge_failed(
                challenge, verification.message or "The verification code was not accepted."
            )

        self._close(challenge)
        self.state.clear_cart()
        logger.info("challenge_verified", order_id=challenge.order_id)
        self.show_confirmation(challenge.order_id)
        return Ok(PaymentOutcome.SUCCESS)

    def cancel_challenge(self, challenge: OtpChallenge) -> None:
        # No backend call; the order stays as the backend left it.
        if not challenge.active:
            return
        self._close(challenge)
        challenge.code = ""
        logger.info("challenge_cancelled", order_id=challenge.order_id)

    def _close(self, challenge: OtpChallenge) -> None:
        challenge.active = False
        challenge.error = None
        if self.challenge is challenge:
            self.challenge = None

    def _challenge_failed(self, challenge: OtpChallenge, message: str) -> Failure:
        challenge.error = message
        logger.info("challenge_rejected", order_id=challenge.order_id)
        return Failure(ChallengeError(message))
