from __future__ import annotations

import asyncio
from datetime import date

from services.checkout.app.checkout.errors import (
    CheckoutValidationError,
    Failure,
    Ok,
    ValidationCode,
)
from services.checkout.app.checkout.payment_resolver import PaymentMethodResolver
from services.checkout.app.models.payment import PaymentMethod, StoredInstrument
from services.checkout.app.services.backend_base import BackendUnavailableError
from services.checkout.app.services.backend_mock import MockMarketplaceBackend

TODAY = date(2026, 10, 19)


def _gateway_first(backend: MockMarketplaceBackend) -> None:
    backend.methods = [PaymentMethod(id=3, tag="thawani"), PaymentMethod(id=1, tag="cash")]


def test_default_is_first_enabled_method(backend: MockMarketplaceBackend) -> None:
    resolver = PaymentMethodResolver(backend, "thawani")

    result = asyncio.run(resolver.load(TODAY))

    assert isinstance(result, Ok)
    assert result.value.method is not None and result.value.method.tag == "cash"
    assert result.value.use_new_instrument


def test_gateway_with_default_instrument_preselects_it(backend: MockMarketplaceBackend) -> None:
    _gateway_first(backend)
    resolver = PaymentMethodResolver(backend, "thawani")

    selection = asyncio.run(resolver.load(TODAY))

    assert isinstance(selection, Ok)
    assert selection.value.uses_stored_instrument
    assert selection.value.instrument_id == "card_1"


def test_expired_default_instrument_is_not_preselected(backend: MockMarketplaceBackend) -> None:
    _gateway_first(backend)
    backend.instruments = [
        StoredInstrument(id="old", exp_month=1, exp_year=2024, is_default=True, last_four="1111")
    ]
    resolver = PaymentMethodResolver(backend, "thawani")

    selection = asyncio.run(resolver.load(TODAY))

    assert isinstance(selection, Ok)
    assert selection.value.use_new_instrument
    assert selection.value.instrument_id is None


def test_instrument_lookup_failure_degrades_silently(backend: MockMarketplaceBackend) -> None:
    _gateway_first(backend)
    backend.fail_next["list_stored_instruments"] = BackendUnavailableError("timeout")
    resolver = PaymentMethodResolver(backend, "thawani")

    selection = asyncio.run(resolver.load(TODAY))

    assert isinstance(selection, Ok)
    assert resolver.instruments == []
    assert selection.value.use_new_instrument


def test_method_lookup_failure_is_reported(backend: MockMarketplaceBackend) -> None:
    backend.fail_next["list_payment_methods"] = BackendUnavailableError("timeout")
    resolver = PaymentMethodResolver(backend, "thawani")

    result = asyncio.run(resolver.load(TODAY))

    assert isinstance(result, Failure)
    assert "payment methods" in result.error.message


def test_select_method_by_tag(backend: MockMarketplaceBackend) -> None:
    resolver = PaymentMethodResolver(backend, "thawani")
    asyncio.run(resolver.load(TODAY))

    result = resolver.select_method("thawani", TODAY)
    missing = resolver.select_method("paypal", TODAY)

    assert isinstance(result, Ok)
    assert result.value.instrument_id == "card_1"
    assert isinstance(missing, Failure)
    assert missing.error.code is ValidationCode.PAYMENT_METHOD_MISSING


def test_select_instrument_refuses_unknown_and_expired(backend: MockMarketplaceBackend) -> None:
    backend.instruments.append(
        StoredInstrument(id="old", exp_month=1, exp_year=2024, last_four="1111", brand="visa")
    )
    resolver = PaymentMethodResolver(backend, "thawani")
    asyncio.run(resolver.load(TODAY))
    resolver.select_method("thawani", TODAY)
    resolver.use_new_instrument()

    unknown = resolver.select_instrument("nope", TODAY)
    expired = resolver.select_instrument("old", TODAY)

    assert isinstance(unknown, Failure)
    assert isinstance(unknown.error, CheckoutValidationError)
    assert unknown.error.code is ValidationCode.INSTRUMENT_MISSING
    assert isinstance(expired, Failure)
    assert expired.error.code is ValidationCode.INSTRUMENT_EXPIRED
    assert resolver.selection.use_new_instrument


def test_stored_instrument_requires_gateway_method(backend: MockMarketplaceBackend) -> None:
    resolver = PaymentMethodResolver(backend, "thawani")
    asyncio.run(resolver.load(TODAY))

    result = resolver.select_instrument("card_1", TODAY)

    assert isinstance(result, Failure)
