from __future__ import annotations

from typing import Protocol

from services.checkout.app.models.cart import Cart
from services.checkout.app.models.checkout import PriceBreakdown
from services.checkout.app.models.order import CalculateRequest, OrderPayload
from services.checkout.app.models.payment import (
    ChallengeVerification,
    Currency,
    GatewayResult,
    OrderCreationResult,
    OrderStatusSnapshot,
    PaymentMethod,
    StoredInstrument,
)


class BackendError(Exception):
    """Base class for marketplace backend errors."""


class BackendNotFoundError(BackendError):
    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class BackendAuthError(BackendError):
    def __init__(self) -> None:
        super().__init__("Authentication required. Sign in again and retry.")


class BackendRejectedError(BackendError):
    """The backend answered but refused the request.

    ``message`` is the backend's own structured message when it supplied one.
    """

    def __init__(self, message: str | None, status_code: int | None = None) -> None:
        super().__init__(message or f"Backend rejected the request (HTTP {status_code})")
        self.message = message
        self.status_code = status_code


class BackendUnavailableError(BackendError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Backend unreachable: {detail}")
        self.detail = detail


class BackendContractError(BackendError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Unexpected backend response: {detail}")
        self.detail = detail


class MarketplaceBackend(Protocol):
    name: str

    async def get_active_cart(self) -> Cart: ...

    async def recalculate(self, cart_id: int, params: CalculateRequest) -> PriceBreakdown: ...

    async def check_coupon(self, shop_id: int, code: str) -> bool: ...

    async def list_payment_methods(self) -> list[PaymentMethod]: ...

    async def list_stored_instruments(self) -> list[StoredInstrument]: ...

    async def list_currencies(self) -> list[Currency]: ...

    async def create_order(self, payload: OrderPayload) -> OrderCreationResult: ...

    async def verify_challenge(
        self, order_id: int, code: str, token: str | None = None
    ) -> ChallengeVerification: ...

    async def get_order_status(self, order_id: int) -> OrderStatusSnapshot: ...

    async def create_transaction(self, order_id: int, payment_id: int) -> int: ...

    async def process_payment(self, tag: str, order_id: int) -> str | None: ...

    async def process_gateway_result(
        self,
        *,
        order_id: int | None,
        session_id: str | None,
        payment_intent_id: str | None,
    ) -> GatewayResult: ...
