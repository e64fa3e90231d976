from __future__ import annotations

from pathlib import Path

import pytest

from services.checkout.app.checkout.session import CheckoutSession
from services.checkout.app.checkout.state import CheckoutState
from services.checkout.app.config import CheckoutConfig
from services.checkout.app.models.checkout import Destination
from services.checkout.app.services.backend_mock import MockMarketplaceBackend
from services.checkout.app.services.pending_store import SqlPendingOrderStore


class RecordingNavigator:
    """Stands in for the browser. Records every navigation in order."""

    def __init__(self, store: SqlPendingOrderStore | None = None) -> None:
        self.store = store
        self.events: list[tuple[str, object]] = []
        # Marker seen in storage at the moment each navigation happened.
        self.marker_at_navigation: list[object] = []

    def navigate(self, url: str) -> None:
        if self.store is not None:
            self.marker_at_navigation.append(self.store.get())
        self.events.append(("navigate", url))

    def show_confirmation(self, order_id: int) -> None:
        self.events.append(("confirmation", order_id))

    def route_to_cart(self) -> None:
        self.events.append(("cart", None))


@pytest.fixture()
def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db_path = tmp_path / "checkout_test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("CHECKOUT_DB_AUTO_CREATE", "true")

    from services.checkout.app.db.init_db import init_db

    init_db()


@pytest.fixture()
def config() -> CheckoutConfig:
    return CheckoutConfig(
        api_base_url="https://api.test",
        api_token="",
        locale="en",
        currency_id="",
        http_timeout_s=5.0,
        public_base_url="https://shop.test",
        card_gateway_tag="thawani",
        pending_order_ttl_s=3600,
    )


@pytest.fixture()
def backend() -> MockMarketplaceBackend:
    return MockMarketplaceBackend()


@pytest.fixture()
def store(db: None) -> SqlPendingOrderStore:
    return SqlPendingOrderStore(ttl_s=3600)


@pytest.fixture()
def navigator(store: SqlPendingOrderStore) -> RecordingNavigator:
    return RecordingNavigator(store)


@pytest.fixture()
def home() -> Destination:
    return Destination(address_id=5, latitude=23.588, longitude=58.3829, label="Home")


@pytest.fixture()
def session(
    backend: MockMarketplaceBackend,
    store: SqlPendingOrderStore,
    navigator: RecordingNavigator,
    config: CheckoutConfig,
    home: Destination,
) -> CheckoutSession:
    s = CheckoutSession(
        backend,
        store,
        navigator,
        config=config,
        state=CheckoutState(destination=home),
    )
    s.phone = "+96890000000"
    return s
