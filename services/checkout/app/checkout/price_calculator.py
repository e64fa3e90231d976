from __future__ import annotations

from decimal import Decimal

import structlog

from services.checkout.app.checkout.errors import (
    CalculationError,
    CheckoutValidationError,
    CouponRejectedError,
    Failure,
    Ok,
    Outcome,
    StaleCartError,
    ValidationCode,
)
from services.checkout.app.models.cart import Cart
from services.checkout.app.models.checkout import (
    FulfillmentMode,
    FulfillmentSelection,
    PriceBreakdown,
)
from services.checkout.app.models.order import CalculateRequest, Location
from services.checkout.app.services.backend_base import (
    BackendError,
    BackendNotFoundError,
    BackendRejectedError,
    BackendUnavailableError,
    MarketplaceBackend,
)

logger = structlog.get_logger(__name__)


class PriceCalculator:
    """Keeps the displayed price breakdown in sync with the backend.

    Every recalculation is tagged with a sequence number. A result is applied only if no
    newer request was issued while it was in flight, so a slow early response can never
    overwrite a fresher one.
    """

    def __init__(self, backend: MarketplaceBackend) -> None:
        self.backend = backend
        self.breakdown: PriceBreakdown | None = None
        self.coupon: str | None = None
        self.last_error: CalculationError | StaleCartError | None = None
        self._seq = 0

    @property
    def seq(self) -> int:
        return self._seq

    async def recalculate(
        self,
        cart_id: int,
        selection: FulfillmentSelection,
        coupon: str | None = None,
    ) -> Outcome[PriceBreakdown] | None:
        """Ask the backend for an authoritative breakdown.

        Returns None when a newer recalculation superseded this one before it completed.
        """

        # Any recalculation still in flight is now out of date.
        self._seq += 1
        seq = self._seq

        if not selection.is_complete():
            return Failure(
                CheckoutValidationError(
                    ValidationCode.FULFILLMENT_INCOMPLETE,
                    "Choose a delivery address before calculating the total.",
                )
            )

        location = None
        if selection.mode is FulfillmentMode.DELIVERY and selection.destination is not None:
            location = Location(
                latitude=selection.destination.latitude,
                longitude=selection.destination.longitude,
            )
        params = CalculateRequest(delivery_type=selection.mode, coupon=coupon, location=location)

        try:
            breakdown = await self.backend.recalculate(cart_id, params)
        except BackendNotFoundError:
            if seq != self._seq:
                logger.info("price_result_discarded", seq=seq, latest=self._seq)
                return None
            self.last_error = StaleCartError()
            return Failure(self.last_error)
        except BackendError as e:
            if seq != self._seq:
                logger.info("price_result_discarded", seq=seq, latest=self._seq)
                return None
            logger.warning("price_recalculation_failed", seq=seq, error=str(e))
            message = e.message if isinstance(e, BackendRejectedError) and e.message else None
            self.last_error = CalculationError(message or "Could not update the total. Please try again.")
            return Failure(self.last_error)

        if seq != self._seq:
            logger.info("price_result_discarded", seq=seq, latest=self._seq)
            return None

        self.breakdown = breakdown
        self.last_error = None
        return Ok(breakdown)

    async def apply_coupon(self, shop_id: int, code: str) -> Outcome[str]:
        code = code.strip()
        if not code:
            return Failure(CouponRejectedError(code, "Enter a coupon code"))

        try:
            valid = await self.backend.check_coupon(shop_id, code)
        except BackendUnavailableError as e:
            logger.warning("coupon_check_failed", error=str(e))
            return Failure(CalculationError("Could not check the coupon. Please try again."))
        except BackendError as e:
            message = e.message if isinstance(e, BackendRejectedError) else None
            return Failure(CouponRejectedError(code, message))

        if not valid:
            return Failure(CouponRejectedError(code))

        self.coupon = code
        return Ok(code)

    def remove_coupon(self) -> None:
        self.coupon = None

    @staticmethod
    def optimistic_subtotal(cart: Cart) -> Decimal:
        # Display only. Submission always relies on the backend's breakdown.
        return cart.local_subtotal
