from __future__ import annotations

from datetime import date

import structlog

from services.checkout.app.checkout.errors import (
    CheckoutError,
    CheckoutValidationError,
    Failure,
    Ok,
    Outcome,
    ValidationCode,
)
from services.checkout.app.models.payment import PaymentMethod, PaymentSelection, StoredInstrument
from services.checkout.app.services.backend_base import BackendError, MarketplaceBackend

logger = structlog.get_logger(__name__)


class PaymentMethodResolver:
    """Holds the enabled payment methods and the user's current choice."""

    def __init__(self, backend: MarketplaceBackend, card_gateway_tag: str) -> None:
        self.backend = backend
        self.card_gateway_tag = card_gateway_tag
        self.methods: list[PaymentMethod] = []
        self.instruments: list[StoredInstrument] = []
        self.selection = PaymentSelection()

    async def list_enabled_methods(self) -> Outcome[list[PaymentMethod]]:
        try:
            self.methods = await self.backend.list_payment_methods()
        except BackendError as e:
            logger.warning("payment_methods_failed", error=str(e))
            return Failure(CheckoutError("Could not load payment methods. Please try again."))
        return Ok(self.methods)

    async def list_stored_instruments(self) -> list[StoredInstrument]:
        # Any lookup failure degrades to "new instrument only".
        try:
            self.instruments = await self.backend.list_stored_instruments()
        except BackendError as e:
            logger.info("stored_instruments_unavailable", error=str(e))
            self.instruments = []
        return self.instruments

    async def load(self, today: date | None = None) -> Outcome[PaymentSelection]:
        methods = await self.list_enabled_methods()
        if isinstance(methods, Failure):
            return methods

        await self.list_stored_instruments()
        self.selection = self.default_selection(today)
        return Ok(self.selection)

    def default_selection(self, today: date | None = None) -> PaymentSelection:
        if not self.methods:
            return PaymentSelection()
        return self._selection_for(self.methods[0], today)

    def is_card_gateway(self, method: PaymentMethod | None) -> bool:
        return method is not None and method.tag == self.card_gateway_tag

    def select_method(self, tag: str, today: date | None = None) -> Outcome[PaymentSelection]:
        for method in self.methods:
            if method.tag == tag:
                self.selection = self._selection_for(method, today)
                return Ok(self.selection)
        return Failure(
            CheckoutValidationError(
                ValidationCode.PAYMENT_METHOD_MISSING, f"Payment method {tag!r} is not available"
            )
        )

    def use_new_instrument(self) -> None:
        self.selection = self.selection.model_copy(
            update={"use_new_instrument": True, "instrument_id": None}
        )

    def select_instrument(
        self, instrument_id: str, today: date | None = None
    ) -> Outcome[PaymentSelection]:
        if not self.is_card_gateway(self.selection.method):
            return Failure(
                CheckoutValidationError(
                    ValidationCode.PAYMENT_METHOD_MISSING,
                    "Saved cards can only be used with card payment",
                )
            )

        instrument = self.find_instrument(instrument_id)
        if instrument is None:
            return Failure(
                CheckoutValidationError(ValidationCode.INSTRUMENT_MISSING, "Saved card not found")
            )
        if instrument.is_expired(today):
            return Failure(
                CheckoutValidationError(
                    ValidationCode.INSTRUMENT_EXPIRED, f"{instrument.masked} has expired"
                )
            )

        self.selection = self.selection.model_copy(
            update={"use_new_instrument": False, "instrument_id": instrument.id}
        )
        return Ok(self.selection)

    def find_instrument(self, instrument_id: str | None) -> StoredInstrument | None:
        for instrument in self.instruments:
            if instrument.id == instrument_id:
                return instrument
        return None

    def _selection_for(self, method: PaymentMethod, today: date | None) -> PaymentSelection:
        if self.is_card_gateway(method):
            for instrument in self.instruments:
                if instrument.is_default and not instrument.is_expired(today):
                    return PaymentSelection(
                        method=method, use_new_instrument=False, instrument_id=instrument.id
                    )
        return PaymentSelection(method=method)
