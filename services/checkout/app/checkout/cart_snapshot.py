from __future__ import annotations

import structlog

from services.checkout.app.checkout.errors import (
    CalculationError,
    Failure,
    Ok,
    Outcome,
    StaleCartError,
)
from services.checkout.app.checkout.state import CheckoutState
from services.checkout.app.models.cart import Cart
from services.checkout.app.services.backend_base import (
    BackendError,
    BackendNotFoundError,
    MarketplaceBackend,
)

logger = structlog.get_logger(__name__)


class CartSnapshot:
    """Refreshes the active cart from the server.

    The locally held cart is only a display hint; the server copy always wins.
    """

    def __init__(self, backend: MarketplaceBackend, state: CheckoutState) -> None:
        self.backend = backend
        self.state = state

    @property
    def cached(self) -> Cart | None:
        return self.state.cart

    async def fetch_active(self) -> Outcome[Cart]:
        try:
            cart = await self.backend.get_active_cart()
        except BackendNotFoundError:
            logger.info("cart_missing")
            self.state.clear_cart()
            return Failure(StaleCartError())
        except BackendError as e:
            logger.warning("cart_fetch_failed", error=str(e))
            return Failure(CalculationError("Could not load your cart. Please try again."))

        if not cart.lines:
            logger.info("cart_empty", cart_id=cart.id)
            self.state.clear_cart()
            return Failure(StaleCartError())

        self.state.replace_cart(cart)
        return Ok(cart)
