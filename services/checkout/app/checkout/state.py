from __future__ import annotations

from collections.abc import Callable

from services.checkout.app.models.cart import Cart
from services.checkout.app.models.checkout import Destination

DestinationListener = Callable[[Destination | None], None]


class CheckoutState:
    """Shared cart and destination for one checkout flow.

    Each field has one writer. The cart is written by cart fetches and by settlement; the
    destination is written by the address collaborator. Everything else only reads.
    """

    def __init__(self, cart: Cart | None = None, destination: Destination | None = None) -> None:
        self._cart = cart
        self._destination = destination
        self._listeners: list[DestinationListener] = []

    @property
    def cart(self) -> Cart | None:
        return self._cart

    @property
    def destination(self) -> Destination | None:
        return self._destination

    def replace_cart(self, cart: Cart) -> None:
        self._cart = cart

    def clear_cart(self) -> None:
        self._cart = None

    def set_destination(self, destination: Destination | None) -> None:
        self._destination = destination
        for listener in list(self._listeners):
            listener(destination)

    def subscribe(self, listener: DestinationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


# Process-wide state for the payment return routes.
checkout_state = CheckoutState()
