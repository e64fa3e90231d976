from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from services.checkout.app.checkout.errors import ChallengeError, Failure, Ok
from services.checkout.app.checkout.settlement import SettlementResumer, outcome_for
from services.checkout.app.checkout.state import CheckoutState
from services.checkout.app.models.payment import (
    ChallengeChannel,
    OrderCreationResult,
    OrderStatusSnapshot,
    PaymentOutcome,
)
from services.checkout.app.services.backend_base import (
    BackendRejectedError,
    BackendUnavailableError,
)
from services.checkout.app.services.backend_mock import MockMarketplaceBackend
from services.checkout.app.services.pending_store import SqlPendingOrderStore

CODE = MockMarketplaceBackend.VALID_OTP


def _resumer(backend, store, navigator, state: CheckoutState | None = None) -> SettlementResumer:
    return SettlementResumer(backend, store, state or CheckoutState(), navigator)


def _order(backend: MockMarketplaceBackend) -> int:
    order_id = 1001
    backend.orders[order_id] = OrderStatusSnapshot(
        order_id=order_id, status="new", transaction_status="progress"
    )
    return order_id


@pytest.mark.parametrize(
    "status,transaction,outcome",
    [
        ("accepted", "paid", PaymentOutcome.SUCCESS),
        ("new", "rejected", PaymentOutcome.FAILED),
        ("new", "canceled", PaymentOutcome.FAILED),
        ("canceled", "progress", PaymentOutcome.CANCELLED),
        ("new", "progress", PaymentOutcome.PENDING),
        ("new", None, PaymentOutcome.PENDING),
    ],
)
def test_outcome_mapping(status: str, transaction: str | None, outcome: PaymentOutcome) -> None:
    snapshot = OrderStatusSnapshot(order_id=1, status=status, transaction_status=transaction)
    assert outcome_for(snapshot) is outcome


# Challenge


def test_backend_challenge_success_clears_cart_and_confirms(
    backend: MockMarketplaceBackend, store, navigator
) -> None:
    state = CheckoutState(cart=backend.cart)
    resumer = _resumer(backend, store, navigator, state)
    challenge = resumer.open_challenge(OrderCreationResult(order_id=_order(backend), challenge_token="t"))

    result = asyncio.run(resumer.submit_challenge(challenge, CODE))

    assert result == Ok(PaymentOutcome.SUCCESS)
    assert challenge.channel is ChallengeChannel.BACKEND
    assert backend.calls_to("verify_challenge") == [(1001, CODE)]
    assert not challenge.active
    assert resumer.challenge is None
    assert state.cart is None
    assert navigator.events == [("confirmation", 1001)]


def test_backend_challenge_failure_keeps_modal_open(
    backend: MockMarketplaceBackend, store, navigator
) -> None:
    state = CheckoutState(cart=backend.cart)
    resumer = _resumer(backend, store, navigator, state)
    challenge = resumer.open_challenge(OrderCreationResult(order_id=_order(backend), challenge_token="t"))

    result = asyncio.run(resumer.submit_challenge(challenge, "000000"))

    assert isinstance(result, Failure)
    assert isinstance(result.error, ChallengeError)
    assert result.error.message == "Invalid verification code"
    assert challenge.active
    assert challenge.code == "000000"
    assert challenge.error == "Invalid verification code"
    assert resumer.challenge is challenge
    assert state.cart is backend.cart
    assert navigator.events == []

    # A fresh code can be entered afterwards.
    retry = asyncio.run(resumer.submit_challenge(challenge, CODE))
    assert retry == Ok(PaymentOutcome.SUCCESS)
    assert len(backend.calls_to("verify_challenge")) == 2


def test_backend_challenge_unavailable_surfaces_generic_message(
    backend: MockMarketplaceBackend, store, navigator
) -> None:
    backend.fail_next["verify_challenge"] = BackendUnavailableError("timeout")
    resumer = _resumer(backend, store, navigator)
    challenge = resumer.open_challenge(OrderCreationResult(order_id=_order(backend), challenge_token="t"))

    result = asyncio.run(resumer.submit_challenge(challenge, CODE))

    assert isinstance(result, Failure)
    assert challenge.active


def test_empty_code_makes_no_call(backend: MockMarketplaceBackend, store, navigator) -> None:
    resumer = _resumer(backend, store, navigator)
    challenge = resumer.open_challenge(OrderCreationResult(order_id=_order(backend), challenge_token="t"))

    result = asyncio.run(resumer.submit_challenge(challenge, "   "))

    assert isinstance(result, Failure)
    assert backend.calls_to("verify_challenge") == []
    assert challenge.active


def test_gateway_challenge_forwards_code_once(
    backend: MockMarketplaceBackend, store: SqlPendingOrderStore, navigator
) -> None:
    resumer = _resumer(backend, store, navigator)
    challenge = resumer.open_challenge(
        OrderCreationResult(order_id=_order(backend), challenge_url="https://gateway.mock/otp/1001?lang=ar")
    )

    result = asyncio.run(resumer.submit_challenge(challenge, CODE))

    assert result == Ok(PaymentOutcome.PENDING)
    assert challenge.channel is ChallengeChannel.GATEWAY_URL
    assert navigator.events == [("navigate", f"https://gateway.mock/otp/1001?lang=ar&otp={CODE}")]
    # The backend verification endpoint is never used for a gateway challenge.
    assert backend.calls_to("verify_challenge") == []
    marker = navigator.marker_at_navigation[0]
    assert marker is not None and marker.order_id == 1001
    assert not challenge.active

    again = asyncio.run(resumer.submit_challenge(challenge, CODE))
    assert isinstance(again, Failure)
    assert len(navigator.events) == 1


def test_cancel_makes_no_backend_call(backend: MockMarketplaceBackend, store, navigator) -> None:
    resumer = _resumer(backend, store, navigator)
    challenge = resumer.open_challenge(OrderCreationResult(order_id=_order(backend), challenge_token="t"))
    challenge.code = "12"
    backend.calls.clear()

    resumer.cancel_challenge(challenge)

    assert not challenge.active
    assert resumer.challenge is None
    assert backend.calls == []
    assert backend.orders[1001].transaction_status == "progress"

    after = asyncio.run(resumer.submit_challenge(challenge, CODE))
    assert isinstance(after, Failure)
    assert backend.calls == []


# Reconciliation


def test_reconcile_uses_marker_when_url_has_no_order_id(
    backend: MockMarketplaceBackend, store: SqlPendingOrderStore, navigator
) -> None:
    order_id = _order(backend)
    backend.mark_paid(order_id)
    store.set(order_id)
    state = CheckoutState(cart=backend.cart)

    result = asyncio.run(_resumer(backend, store, navigator, state).reconcile())

    assert result.outcome == "success"
    assert result.order_id == order_id
    assert result.cart_cleared
    assert result.next_route == "confirmation"
    assert state.cart is None
    assert store.get() is None


def test_gateway_hint_is_not_trusted(backend: MockMarketplaceBackend, store, navigator) -> None:
    order_id = _order(backend)
    backend.mark_rejected(order_id)
    store.set(order_id)

    result = asyncio.run(_resumer(backend, store, navigator).reconcile(status_hint="success"))

    assert result.outcome == "failed"
    assert not result.cart_cleared
    assert result.transaction_status == "rejected"


def test_url_order_id_wins_over_marker(backend: MockMarketplaceBackend, store, navigator) -> None:
    order_id = _order(backend)
    store.set(999)

    result = asyncio.run(_resumer(backend, store, navigator).reconcile(order_id=order_id))

    assert result.order_id == order_id
    assert backend.calls_to("get_order_status") == [order_id]
    assert store.get() is None


def test_no_marker_refetches_status(backend: MockMarketplaceBackend, store, navigator) -> None:
    order_id = _order(backend)

    result = asyncio.run(_resumer(backend, store, navigator).reconcile(order_id=order_id))

    assert result.outcome == "pending"
    assert result.next_route == "order"
    assert backend.calls_to("get_order_status") == [order_id]


def test_nothing_to_reconcile_is_failed(backend: MockMarketplaceBackend, store, navigator) -> None:
    result = asyncio.run(_resumer(backend, store, navigator).reconcile(status_hint="success"))

    assert result.outcome == "failed"
    assert result.order_id is None
    assert result.next_route == "cart"
    assert backend.calls == []


def test_status_failure_falls_back_to_gateway_result(
    backend: MockMarketplaceBackend, store, navigator
) -> None:
    order_id = _order(backend)
    backend.mark_paid(order_id)
    backend.fail_next["get_order_status"] = BackendUnavailableError("timeout")

    result = asyncio.run(
        _resumer(backend, store, navigator).reconcile(order_id=order_id, session_id="cs_1")
    )

    assert result.outcome == "success"
    assert backend.calls_to("process_gateway_result") == [(order_id, "cs_1", None)]


def test_session_reference_alone_uses_gateway_result(
    backend: MockMarketplaceBackend, store, navigator
) -> None:
    result = asyncio.run(
        _resumer(backend, store, navigator).reconcile(payment_intent_id="pi_1")
    )

    assert result.outcome == "pending"
    assert backend.calls_to("get_order_status") == []
    assert backend.calls_to("process_gateway_result") == [(None, None, "pi_1")]


def test_everything_failing_reports_processing_error(
    backend: MockMarketplaceBackend, store, navigator
) -> None:
    order_id = _order(backend)
    backend.fail_next["get_order_status"] = BackendUnavailableError("timeout")
    backend.fail_next["process_gateway_result"] = BackendRejectedError("Unknown session", 422)

    result = asyncio.run(_resumer(backend, store, navigator).reconcile(order_id=order_id))

    assert result.outcome == "failed"
    assert "could not confirm" in result.message
    assert result.next_route == "checkout"


def test_stale_marker_is_not_resumed(backend: MockMarketplaceBackend, store, navigator) -> None:
    order_id = _order(backend)
    store.set(order_id, now=datetime(2020, 1, 1, tzinfo=timezone.utc))

    result = asyncio.run(_resumer(backend, store, navigator).reconcile())

    assert result.outcome == "failed"
    assert result.order_id is None
    assert backend.calls_to("get_order_status") == []


def test_redirect_without_navigator_fails_before_storage(backend: MockMarketplaceBackend, store) -> None:
    resumer = SettlementResumer(backend, store, CheckoutState())

    with pytest.raises(RuntimeError):
        resumer.begin_redirect(1001, "https://gateway.mock/pay/1001")

    assert store.get() is None


def test_gateway_challenge_replaces_existing_code_param(
    backend: MockMarketplaceBackend, store: SqlPendingOrderStore, navigator
) -> None:
    resumer = _resumer(backend, store, navigator)
    challenge = resumer.open_challenge(
        OrderCreationResult(order_id=_order(backend), challenge_url="https://gateway.mock/otp/1001?otp=")
    )

    asyncio.run(resumer.submit_challenge(challenge, CODE))

    assert navigator.events == [("navigate", f"https://gateway.mock/otp/1001?otp={CODE}")]


def test_backend_challenge_sends_issued_token(
    backend: MockMarketplaceBackend, store, navigator
) -> None:
    order_id = _order(backend)
    backend.challenge_tokens[order_id] = "otp_1001"
    resumer = _resumer(backend, store, navigator)

    forged = resumer.open_challenge(OrderCreationResult(order_id=order_id, challenge_token="other"))
    rejected = asyncio.run(resumer.submit_challenge(forged, CODE))
    assert isinstance(rejected, Failure)
    assert forged.error == "Verification session expired"

    challenge = resumer.open_challenge(OrderCreationResult(order_id=order_id, challenge_token="otp_1001"))
    assert challenge.token == "otp_1001"
    assert asyncio.run(resumer.submit_challenge(challenge, CODE)) == Ok(PaymentOutcome.SUCCESS)
